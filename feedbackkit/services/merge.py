"""
Merge engine: fold duplicate feedback items into one surviving item.

Everything happens in one transaction with all involved rows locked (in id
order). A failure at any step rolls the whole merge back.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Sequence

from sqlalchemy import func

from feedbackkit import events
from feedbackkit.errors import Conflict, NotFound, ValidationError
from feedbackkit.extensions import db
from feedbackkit.models.comment import Comment
from feedbackkit.models.feedback import Feedback
from feedbackkit.models.project import Project
from feedbackkit.models.vote import Vote
from feedbackkit.observability import log_event
from feedbackkit.services import access
from feedbackkit.services.sdk_users import total_mrr_for
from feedbackkit.services.transactions import lock_row, transactional

COMMENT_ORIGIN_PREFIX = "[Originally on: {title}]"


def _as_id(value, field: str) -> int:
    # bool is an int subclass; "true" must not become feedback #1
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError("Feedback ids must be integers", field=field)
    try:
        return int(value)
    except ValueError:
        raise ValidationError("Feedback ids must be integers", field=field)


def _coerce_ids(primary_id, secondary_ids) -> tuple[int, List[int]]:
    primary = _as_id(primary_id, "primary_feedback_id")
    if secondary_ids is None:
        secondary_ids = []
    if not isinstance(secondary_ids, (list, tuple)):
        raise ValidationError("secondary_feedback_ids must be a list of ids", field="secondary_feedback_ids")
    secondaries = [_as_id(s, "secondary_feedback_ids") for s in secondary_ids]

    if not secondaries:
        raise ValidationError("At least one feedback item to merge is required", field="secondary_feedback_ids")
    if primary in secondaries:
        raise ValidationError("Cannot merge a feedback item into itself", field="secondary_feedback_ids")
    if len(set(secondaries)) != len(secondaries):
        raise ValidationError("Duplicate ids in secondary_feedback_ids", field="secondary_feedback_ids")
    return primary, secondaries


def _lock_all(project: Project, ids: Sequence[int]) -> dict:
    rows = lock_row(db.session.query(Feedback).filter(Feedback.id.in_(ids)).order_by(Feedback.id)).all()
    by_id = {fb.id: fb for fb in rows}

    missing = [i for i in ids if i not in by_id]
    if missing:
        raise NotFound(f"Feedback not found: {', '.join(str(i) for i in missing)}")
    foreign = [i for i in ids if by_id[i].project_id != project.id]
    if foreign:
        raise ValidationError("All feedback items must belong to the same project")
    already = [i for i in ids if by_id[i].is_merged]
    if already:
        raise Conflict(f"Feedback already merged: {', '.join(str(i) for i in already)}")
    return by_id


def _migrate_votes(primary: Feedback, secondary: Feedback, voters: set) -> int:
    """Re-point secondary votes; drop those whose user already voted the primary. Returns dropped count."""
    dropped = 0
    for vote in db.session.query(Vote).filter(Vote.feedback_id == secondary.id).order_by(Vote.id).all():
        if vote.user_id in voters:
            db.session.delete(vote)
            dropped += 1
        else:
            vote.feedback_id = primary.id
            voters.add(vote.user_id)
    db.session.flush()
    return dropped


def _migrate_comments(primary: Feedback, secondary: Feedback) -> None:
    prefix = COMMENT_ORIGIN_PREFIX.format(title=secondary.title)
    for comment in db.session.query(Comment).filter(Comment.feedback_id == secondary.id).all():
        comment.content = f"{prefix}\n\n{comment.content}"
        comment.feedback_id = primary.id


@transactional
def merge_feedback(project: Project, actor: access.Actor, primary_id, secondary_ids) -> Feedback:
    access.ensure_can_write(project, actor, access.MERGE)
    primary_id, secondary_ids = _coerce_ids(primary_id, secondary_ids)

    by_id = _lock_all(project, [primary_id] + secondary_ids)
    primary = by_id[primary_id]
    secondaries = [by_id[i] for i in secondary_ids]

    voters = {
        uid for (uid,) in db.session.query(Vote.user_id).filter(Vote.feedback_id == primary.id).all()
    }
    now = datetime.now(timezone.utc)
    merged_ids = list(primary.merged_feedback_ids or [])
    dropped = 0

    for sec in secondaries:
        dropped += _migrate_votes(primary, sec, voters)
        _migrate_comments(primary, sec)

        merged_ids.append(sec.id)
        # Items the secondary had absorbed now hang directly off the survivor
        for old_id in sec.merged_feedback_ids or []:
            if old_id not in merged_ids:
                merged_ids.append(old_id)
        db.session.query(Feedback).filter(Feedback.merged_into_id == sec.id).update(
            {Feedback.merged_into_id: primary.id}, synchronize_session=False
        )

        sec.vote_count = 0
        sec.total_mrr = None
        sec.merged_into_id = primary.id
        sec.merged_at = now
        sec.merged_feedback_ids = []

    db.session.flush()
    primary.vote_count = (
        db.session.query(func.count(Vote.id)).filter(Vote.feedback_id == primary.id).scalar() or 0
    )
    primary.total_mrr = total_mrr_for(primary)
    primary.merged_feedback_ids = merged_ids
    db.session.flush()

    events.emit(
        events.FEEDBACK_MERGED,
        project_id=project.id,
        feedback_id=primary.id,
        primary_id=primary.id,
        secondary_ids=secondary_ids,
    )
    log_event(
        "feedback_merged",
        project_id=project.id,
        primary_id=primary.id,
        secondary_ids=secondary_ids,
        vote_count=primary.vote_count,
        duplicate_votes_dropped=dropped,
    )
    return primary
