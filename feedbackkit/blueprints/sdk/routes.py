from flask import g, jsonify, request

from feedbackkit.services import comments, feedback, sdk_users, view_events, votes
from feedbackkit.services.dispatcher import dispatch_after_commit
from feedbackkit.utils.validators import json_object, parse_bool, parse_mrr, pick
from . import bp


def _payload() -> dict:
    return json_object(request.get_json(silent=True))


def _viewer_id(data=None):
    """SDK user making the call, from the body or the query string."""
    data = data or {}
    return pick(data, "user_id", "userId") or request.args.get("user_id") or request.args.get("userId")


@bp.get("/feedbacks")
def list_feedbacks():
    args = request.args
    items = feedback.list_feedback(
        g.project,
        status=args.get("status") or None,
        category=args.get("category") or None,
        include_merged=parse_bool(args.get("include_merged", args.get("includeMerged"))),
        viewer_user_id=_viewer_id(),
    )
    return jsonify(items), 200


@bp.post("/feedbacks")
def create_feedback():
    data = _payload()
    fb = feedback.submit_feedback(
        g.project,
        g.actor,
        title=data.get("title"),
        description=data.get("description"),
        category=data.get("category"),
        user_id=pick(data, "user_id", "userId"),
        user_email=pick(data, "user_email", "userEmail"),
    )
    dispatch_after_commit()
    return jsonify(feedback.serialize_feedback(fb, viewer_user_id=fb.user_id)), 201


@bp.get("/feedbacks/<int:feedback_id>")
def get_feedback(feedback_id: int):
    fb = feedback.get_feedback(g.project, feedback_id)
    return jsonify(feedback.serialize_feedback(fb, viewer_user_id=_viewer_id())), 200


@bp.post("/feedbacks/<int:feedback_id>/votes")
def vote(feedback_id: int):
    data = _payload()
    result = votes.cast_vote(
        g.project,
        g.actor,
        feedback_id,
        user_id=pick(data, "user_id", "userId"),
        email=pick(data, "email"),
        notify_status_change=parse_bool(pick(data, "notify_status_change", "notifyStatusChange")),
    )
    dispatch_after_commit()
    return jsonify(result.to_dict()), 200


@bp.delete("/feedbacks/<int:feedback_id>/votes")
def unvote(feedback_id: int):
    data = _payload()
    result = votes.remove_vote(g.project, g.actor, feedback_id, user_id=_viewer_id(data))
    dispatch_after_commit()
    return jsonify(result.to_dict()), 200


@bp.get("/feedbacks/<int:feedback_id>/comments")
def list_comments(feedback_id: int):
    return jsonify(comments.list_comments(g.project, feedback_id)), 200


@bp.post("/feedbacks/<int:feedback_id>/comments")
def create_comment(feedback_id: int):
    data = _payload()
    comment = comments.add_comment(
        g.project, g.actor, feedback_id, content=data.get("content"), user_id=pick(data, "user_id", "userId")
    )
    return jsonify(comment.to_dict()), 201


@bp.post("/users/register")
def register_user():
    data = _payload()
    row = sdk_users.register_sdk_user(
        g.project, g.actor, user_id=pick(data, "user_id", "userId"), mrr=parse_mrr(pick(data, "mrr"))
    )
    return jsonify(row.to_dict()), 200


@bp.post("/events/track")
def track_event():
    data = _payload()
    row = view_events.track_event(
        g.project,
        g.actor,
        event_name=pick(data, "event_name", "eventName"),
        user_id=pick(data, "user_id", "userId"),
        properties=data.get("properties"),
    )
    return jsonify(row.to_dict()), 201
