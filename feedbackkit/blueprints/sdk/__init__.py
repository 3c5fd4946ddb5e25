from flask import Blueprint, current_app, g, request

from feedbackkit.extensions import csrf, limiter
from feedbackkit.services import access
from feedbackkit.services.projects import project_for_api_key

bp = Blueprint("sdk", __name__)

# Client apps authenticate with the project API key, not a browser session
csrf.exempt(bp)
limiter.limit(lambda: current_app.config.get("RATELIMIT_SDK", "120 per minute"))(bp)


@bp.before_request
def _resolve_project():
    project = project_for_api_key(request.headers.get("X-API-Key"))
    g.project = project
    g.actor = access.Actor.from_api_key(project)


# Import submodules so their routes register on the same bp
from . import routes  # noqa: E402,F401
