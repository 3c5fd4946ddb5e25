from flask import Blueprint, current_app, jsonify, request

from feedbackkit.extensions import csrf, limiter
from feedbackkit.services.votes import unsubscribe as unsubscribe_vote
from feedbackkit.utils.validators import json_object

bp = Blueprint("public", __name__)


@bp.route("/unsubscribe", methods=["GET", "POST"])
@csrf.exempt
@limiter.limit(lambda: current_app.config.get("RATELIMIT_UNSUBSCRIBE", "30 per minute"))
def unsubscribe():
    """One-click link from status emails. Always answers ok, whether or not the key exists."""
    data = json_object(request.get_json(silent=True))
    key = request.args.get("key") or request.form.get("key") or data.get("key")
    unsubscribe_vote(key)
    return jsonify({"ok": True}), 200
