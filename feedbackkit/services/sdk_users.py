"""SDK user registry: who the client app's end users are and what they pay (MRR)."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from feedbackkit.errors import ValidationError
from feedbackkit.extensions import db
from feedbackkit.models.feedback import Feedback
from feedbackkit.models.project import Project
from feedbackkit.models.sdk_user import SdkUser
from feedbackkit.models.vote import Vote
from feedbackkit.observability import log_event
from feedbackkit.services import access
from feedbackkit.services.transactions import transactional
from feedbackkit.utils.validators import clean_str


def _find(project_id: int, uid: str) -> Optional[SdkUser]:
    return db.session.query(SdkUser).filter_by(project_id=project_id, user_id=uid).one_or_none()


@transactional
def register_sdk_user(project: Project, actor: access.Actor, user_id: str, mrr: Optional[float] = None) -> SdkUser:
    """Upsert the end user; a supplied MRR replaces the stored one, None leaves it alone."""
    access.ensure_can_write(project, actor, access.REGISTER_USER)
    uid = clean_str(user_id)
    if uid is None:
        raise ValidationError("user_id is required", field="user_id")

    now = datetime.now(timezone.utc)
    row = _find(project.id, uid)
    if row is None:
        row = SdkUser(project_id=project.id, user_id=uid, mrr=mrr, first_seen_at=now, last_seen_at=now)
        try:
            # Savepoint: losing the insert race must not discard the caller's pending work
            with db.session.begin_nested():
                db.session.add(row)
                db.session.flush()
        except IntegrityError:
            row = _find(project.id, uid)
    if mrr is not None:
        row.mrr = mrr
    row.last_seen_at = now

    log_event("sdk_user.registered", project_id=project.id, user_id=uid, has_mrr=row.mrr is not None)
    return row


def total_mrr_for(feedback: Feedback) -> Optional[float]:
    """Sum of registered MRR across the distinct voters of this item; None when nobody reported any."""
    total = (
        db.session.query(func.sum(SdkUser.mrr))
        .join(Vote, (Vote.user_id == SdkUser.user_id) & (SdkUser.project_id == feedback.project_id))
        .filter(Vote.feedback_id == feedback.id)
        .scalar()
    )
    return round(float(total), 2) if total is not None else None
