from flask import Blueprint
from flask_login import current_user

from feedbackkit.errors import Unauthorized

bp = Blueprint("admin", __name__)


@bp.before_request
def _require_login_admin():
    if current_user.is_authenticated:
        return None
    raise Unauthorized("Login required")


# Import submodules so their routes register on the same bp
from . import projects  # noqa: E402,F401
from . import feedbacks  # noqa: E402,F401
from . import analytics  # noqa: E402,F401
