from __future__ import annotations

from typing import List

from feedbackkit.errors import Conflict, NotFound, ValidationError
from feedbackkit.extensions import db
from feedbackkit.models.comment import Comment
from feedbackkit.models.project import Project
from feedbackkit.observability import log_event
from feedbackkit.services import access
from feedbackkit.services.feedback import get_feedback
from feedbackkit.services.transactions import transactional
from feedbackkit.utils.validators import clean_str, require_text

COMMENT_MAX = 5000


@transactional
def add_comment(project: Project, actor: access.Actor, feedback_id: int, content, user_id=None) -> Comment:
    """
    SDK callers comment as their end user; operators comment as admins
    (is_admin=True, user_id is the operator id).
    """
    fb = get_feedback(project, feedback_id)
    access.ensure_can_write(project, actor, access.COMMENT, fb)
    if fb.is_merged:
        raise Conflict(f"This feedback was merged into #{fb.merged_into_id}", merged_into_id=fb.merged_into_id)

    text = require_text(content, "content", COMMENT_MAX)
    if actor.is_api_key:
        uid = clean_str(user_id)
        if uid is None:
            raise ValidationError("user_id is required", field="user_id")
        is_admin = False
    else:
        uid = str(actor.user_id)
        is_admin = True

    comment = Comment(feedback_id=fb.id, content=text, user_id=uid, is_admin=is_admin)
    db.session.add(comment)
    db.session.flush()
    log_event("comment_created", project_id=project.id, feedback_id=fb.id, is_admin=is_admin)
    return comment


def list_comments(project: Project, feedback_id: int) -> List[dict]:
    fb = get_feedback(project, feedback_id)
    rows = (
        db.session.query(Comment)
        .filter(Comment.feedback_id == fb.id)
        .order_by(Comment.created_at.asc(), Comment.id.asc())
        .all()
    )
    return [c.to_dict() for c in rows]


@transactional
def delete_comment(project: Project, actor: access.Actor, feedback_id: int, comment_id: int) -> None:
    fb = get_feedback(project, feedback_id)
    access.ensure_can_write(project, actor, access.DELETE_COMMENT, fb)
    comment = db.session.query(Comment).filter_by(id=comment_id, feedback_id=fb.id).one_or_none()
    if comment is None:
        raise NotFound("Comment not found")
    db.session.delete(comment)
    log_event("comment_deleted", project_id=project.id, feedback_id=fb.id, comment_id=comment_id)
