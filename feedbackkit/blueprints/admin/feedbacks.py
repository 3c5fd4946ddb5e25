from flask import jsonify, request
from flask_login import current_user

from feedbackkit.services import comments, feedback, merge
from feedbackkit.services.dispatcher import dispatch_after_commit
from feedbackkit.services.projects import project_for_user
from feedbackkit.utils.validators import json_object, parse_bool
from . import bp


def _payload() -> dict:
    return json_object(request.get_json(silent=True))


@bp.get("/projects/<int:project_id>/feedbacks")
def list_feedbacks(project_id: int):
    project, _ = project_for_user(current_user, project_id)
    args = request.args
    items = feedback.list_feedback(
        project,
        status=args.get("status") or None,
        category=args.get("category") or None,
        include_merged=parse_bool(args.get("include_merged")),
    )
    return jsonify(items), 200


@bp.get("/projects/<int:project_id>/feedbacks/<int:feedback_id>")
def get_feedback(project_id: int, feedback_id: int):
    project, _ = project_for_user(current_user, project_id)
    fb = feedback.get_feedback(project, feedback_id)
    return jsonify(feedback.serialize_feedback(fb)), 200


@bp.patch("/projects/<int:project_id>/feedbacks/<int:feedback_id>")
def update_feedback(project_id: int, feedback_id: int):
    data = _payload()
    project, actor = project_for_user(current_user, project_id)

    changes = {k: data[k] for k in ("title", "description", "status", "category") if k in data}
    # An explicit null/blank reason is meaningful, so only forward the key when sent
    if "rejection_reason" in data:
        changes["rejection_reason"] = data["rejection_reason"]

    fb = feedback.update_feedback(project, actor, feedback_id, **changes)
    dispatch_after_commit()
    return jsonify(feedback.serialize_feedback(fb)), 200


@bp.delete("/projects/<int:project_id>/feedbacks/<int:feedback_id>")
def delete_feedback(project_id: int, feedback_id: int):
    project, actor = project_for_user(current_user, project_id)
    feedback.delete_feedback(project, actor, feedback_id)
    return "", 204


@bp.post("/projects/<int:project_id>/feedbacks/merge")
def merge_feedbacks(project_id: int):
    data = _payload()
    project, actor = project_for_user(current_user, project_id)
    primary = merge.merge_feedback(
        project,
        actor,
        data.get("primary_feedback_id"),
        data.get("secondary_feedback_ids"),
    )
    dispatch_after_commit()
    return jsonify(feedback.serialize_feedback(primary)), 200


@bp.get("/projects/<int:project_id>/feedbacks/<int:feedback_id>/comments")
def list_comments(project_id: int, feedback_id: int):
    project, _ = project_for_user(current_user, project_id)
    return jsonify(comments.list_comments(project, feedback_id)), 200


@bp.post("/projects/<int:project_id>/feedbacks/<int:feedback_id>/comments")
def create_comment(project_id: int, feedback_id: int):
    project, actor = project_for_user(current_user, project_id)
    comment = comments.add_comment(project, actor, feedback_id, content=_payload().get("content"))
    return jsonify(comment.to_dict()), 201


@bp.delete("/projects/<int:project_id>/feedbacks/<int:feedback_id>/comments/<int:comment_id>")
def delete_comment(project_id: int, feedback_id: int, comment_id: int):
    project, actor = project_for_user(current_user, project_id)
    comments.delete_comment(project, actor, feedback_id, comment_id)
    return "", 204
