"""
Feedback lifecycle: submission, field/status updates, listing and hard delete.

Status values: pending (initial) -> approved / in_progress / testflight ->
completed | rejected. Any transition is allowed as long as the target is in
the project's allowed_statuses; rejected items may be re-opened.
"""
from __future__ import annotations

from typing import List, Optional

from sqlalchemy import func

from feedbackkit import events
from feedbackkit.errors import NotFound, ValidationError
from feedbackkit.extensions import db
from feedbackkit.models.comment import Comment
from feedbackkit.models.feedback import (
    CATEGORY_CHOICES,
    DESCRIPTION_MAX,
    Feedback,
    REJECTION_REASON_MAX,
    STATUS_CHOICES,
    STATUS_PENDING,
    STATUS_REJECTED,
    TITLE_MAX,
)
from feedbackkit.models.project import Project
from feedbackkit.observability import log_event
from feedbackkit.services import access, quota
from feedbackkit.services.transactions import transactional
from feedbackkit.services.votes import (
    insert_vote,
    load_feedback_for_update,
    refresh_total_mrr,
    voted_feedback_ids,
)
from feedbackkit.utils.validators import clean_str, clean_text, normalize_email, require_text

_UNSET = object()


def _validate_category(category) -> str:
    value = clean_str(category) or "feature_request"
    if value not in CATEGORY_CHOICES:
        raise ValidationError(f"Invalid category {value!r}", field="category")
    return value


def _clean_rejection_reason(reason) -> Optional[str]:
    """Trimmed reason, None when blank; ValidationError when too long."""
    text = clean_text(reason)
    if text is not None and len(text) > REJECTION_REASON_MAX:
        raise ValidationError(
            f"rejection_reason must be at most {REJECTION_REASON_MAX} characters",
            field="rejection_reason",
        )
    return text


@transactional
def submit_feedback(project: Project, actor: access.Actor, *, title, description, user_id,
                    category="feature_request", user_email=None) -> Feedback:
    """Create a pending item plus the submitter's own vote (vote_count starts at 1)."""
    access.ensure_can_write(project, actor, access.SUBMIT)

    title = require_text(title, "title", TITLE_MAX)
    description = require_text(description, "description", DESCRIPTION_MAX)
    category = _validate_category(category)
    uid = clean_str(user_id)
    if uid is None:
        raise ValidationError("user_id is required", field="user_id")
    email = normalize_email(user_email, field="user_email")

    quota.enforce_quota(project, quota.SUBMIT_FEEDBACK)

    fb = Feedback(
        project_id=project.id,
        title=title,
        description=description,
        category=category,
        status=STATUS_PENDING,
        user_id=uid,
        user_email=email,
        vote_count=1,
        merged_feedback_ids=[],
    )
    db.session.add(fb)
    db.session.flush()

    # Submitters with an email hear about status changes on their own item
    insert_vote(fb, uid, email, notify_status_change=email is not None)
    refresh_total_mrr(fb)

    events.emit(events.FEEDBACK_CREATED, project_id=project.id, feedback_id=fb.id, category=category)
    events.emit(events.VOTE_CAST, project_id=project.id, feedback_id=fb.id, user_id=uid)
    log_event("feedback_created", project_id=project.id, feedback_id=fb.id, category=category)
    return fb


def apply_status(fb: Feedback, new_status: str, rejection_reason=_UNSET) -> Optional[str]:
    """
    Move fb to new_status and maintain rejection_reason. Returns the old status
    when it changed, else None.

    Entering or staying in rejected stores a supplied reason (blank means none);
    leaving rejected always clears it.
    """
    old_status = fb.status
    reason = _UNSET if rejection_reason is _UNSET else _clean_rejection_reason(rejection_reason)

    if new_status == STATUS_REJECTED:
        if old_status != STATUS_REJECTED:
            fb.rejection_reason = None if reason is _UNSET else reason
        elif reason is not _UNSET and reason is not None:
            fb.rejection_reason = reason
    else:
        fb.rejection_reason = None

    fb.status = new_status
    return old_status if old_status != new_status else None


@transactional
def update_feedback(project: Project, actor: access.Actor, feedback_id: int, *, title=None, description=None,
                    status=None, category=None, rejection_reason=_UNSET) -> Feedback:
    """Partial update from the dashboard; absent fields are left unchanged."""
    fb = load_feedback_for_update(project, feedback_id)

    if title is not None or description is not None:
        access.ensure_can_write(project, actor, access.UPDATE_CONTENT, fb)
        if title is not None:
            fb.title = require_text(title, "title", TITLE_MAX)
        if description is not None:
            fb.description = require_text(description, "description", DESCRIPTION_MAX)

    if category is not None:
        access.ensure_can_write(project, actor, access.UPDATE_CATEGORY, fb)
        fb.category = _validate_category(category)

    if status is not None:
        access.ensure_can_write(project, actor, access.UPDATE_STATUS, fb)
        new_status = clean_str(status)
        if new_status not in STATUS_CHOICES or new_status not in (project.allowed_statuses or []):
            raise ValidationError(f"Status {status!r} is not allowed for this project", field="status")
        old_status = apply_status(fb, new_status, rejection_reason)
        if old_status is not None:
            events.emit(
                events.FEEDBACK_STATUS_CHANGED,
                project_id=project.id,
                feedback_id=fb.id,
                old_status=old_status,
                new_status=new_status,
            )
            log_event("feedback_status_changed", project_id=project.id, feedback_id=fb.id,
                      old_status=old_status, new_status=new_status)
    elif rejection_reason is not _UNSET:
        # Editing the reason on an item that is already rejected
        access.ensure_can_write(project, actor, access.UPDATE_STATUS, fb)
        if fb.status == STATUS_REJECTED:
            reason = _clean_rejection_reason(rejection_reason)
            if reason is not None:
                fb.rejection_reason = reason

    if title is None and description is None and category is None and status is None \
            and rejection_reason is _UNSET:
        access.ensure_can_write(project, actor, access.UPDATE_CONTENT, fb)

    db.session.flush()
    return fb


def get_feedback(project: Project, feedback_id: int) -> Feedback:
    """Any item in the project, merge casualties included."""
    fb = db.session.query(Feedback).filter(
        Feedback.id == feedback_id, Feedback.project_id == project.id
    ).one_or_none()
    if fb is None:
        raise NotFound("Feedback not found")
    return fb


def comment_counts(feedback_ids) -> dict:
    ids = list(feedback_ids)
    if not ids:
        return {}
    rows = (
        db.session.query(Comment.feedback_id, func.count(Comment.id))
        .filter(Comment.feedback_id.in_(ids))
        .group_by(Comment.feedback_id)
        .all()
    )
    return {fid: n for fid, n in rows}


def serialize_feedback(fb: Feedback, viewer_user_id: Optional[str] = None) -> dict:
    voted = voted_feedback_ids([fb.id], viewer_user_id)
    return fb.to_dict(has_voted=fb.id in voted, comment_count=comment_counts([fb.id]).get(fb.id, 0))


def list_feedback(project: Project, *, status=None, category=None, include_merged: bool = False,
                  viewer_user_id: Optional[str] = None) -> List[dict]:
    """Most-voted first, newest first among equals."""
    q = db.session.query(Feedback).filter(Feedback.project_id == project.id)
    if not include_merged:
        q = q.filter(Feedback.active())
    if status:
        if status not in STATUS_CHOICES:
            raise ValidationError(f"Invalid status {status!r}", field="status")
        q = q.filter(Feedback.status == status)
    if category:
        if category not in CATEGORY_CHOICES:
            raise ValidationError(f"Invalid category {category!r}", field="category")
        q = q.filter(Feedback.category == category)

    items = q.order_by(Feedback.vote_count.desc(), Feedback.created_at.desc(), Feedback.id.desc()).all()
    ids = [fb.id for fb in items]
    voted = voted_feedback_ids(ids, viewer_user_id)
    counts = comment_counts(ids)
    return [fb.to_dict(has_voted=fb.id in voted, comment_count=counts.get(fb.id, 0)) for fb in items]


@transactional
def delete_feedback(project: Project, actor: access.Actor, feedback_id: int) -> None:
    """Hard delete with votes and comments, and any casualties merged into it."""
    fb = load_feedback_for_update(project, feedback_id)
    access.ensure_can_write(project, actor, access.DELETE, fb)

    casualties = db.session.query(Feedback).filter(Feedback.merged_into_id == fb.id).all()
    for c in casualties:
        db.session.delete(c)
    db.session.delete(fb)
    db.session.flush()
    log_event("feedback_deleted", project_id=project.id, feedback_id=feedback_id, casualties=len(casualties))
