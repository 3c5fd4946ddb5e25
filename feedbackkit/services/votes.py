"""
Vote ledger.

One row per (user, feedback), guaranteed by uq_votes_user_feedback: a racing
duplicate insert fails at flush and surfaces as Conflict. The cached
Feedback.vote_count is adjusted with an SQL expression on the locked row in
the same transaction, so it always equals the number of vote rows.
"""
from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Iterable, Optional, Set

from sqlalchemy.exc import IntegrityError

from feedbackkit import events
from feedbackkit.errors import Conflict, NotFound, ValidationError
from feedbackkit.extensions import db
from feedbackkit.models.feedback import Feedback
from feedbackkit.models.project import Project
from feedbackkit.models.vote import Vote
from feedbackkit.observability import log_event
from feedbackkit.services import access
from feedbackkit.services.sdk_users import total_mrr_for
from feedbackkit.services.transactions import lock_row, transactional
from feedbackkit.utils.validators import clean_str, normalize_email


@dataclass(frozen=True)
class VoteResult:
    feedback_id: int
    vote_count: int
    has_voted: bool

    def to_dict(self) -> dict:
        return dict(feedback_id=self.feedback_id, vote_count=self.vote_count, has_voted=self.has_voted)


def new_permission_key() -> str:
    return secrets.token_urlsafe(32)


def load_feedback_for_update(project: Project, feedback_id: int) -> Feedback:
    fb = lock_row(
        db.session.query(Feedback).filter(Feedback.id == feedback_id, Feedback.project_id == project.id)
    ).one_or_none()
    if fb is None:
        raise NotFound("Feedback not found")
    return fb


def _require_user_id(user_id) -> str:
    uid = clean_str(user_id)
    if uid is None:
        raise ValidationError("user_id is required", field="user_id")
    return uid


def insert_vote(fb: Feedback, user_id: str, email: Optional[str] = None, notify_status_change: bool = False) -> Vote:
    """Add the vote row and flush; a duplicate (user, feedback) raises Conflict."""
    if notify_status_change and not email:
        raise ValidationError("An email is required to be notified of status changes", field="email")

    vote = Vote(
        user_id=user_id,
        feedback_id=fb.id,
        email=email,
        notify_status_change=bool(notify_status_change),
        permission_key=new_permission_key() if notify_status_change else None,
    )
    db.session.add(vote)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise Conflict("You have already voted for this feedback") from exc
    return vote


def refresh_total_mrr(fb: Feedback) -> None:
    fb.total_mrr = total_mrr_for(fb)


@transactional
def cast_vote(project: Project, actor: access.Actor, feedback_id: int, user_id: str,
              email: Optional[str] = None, notify_status_change: bool = False) -> VoteResult:
    fb = load_feedback_for_update(project, feedback_id)
    access.ensure_can_write(project, actor, access.VOTE, fb)
    if fb.is_merged:
        raise Conflict(f"This feedback was merged into #{fb.merged_into_id}", merged_into_id=fb.merged_into_id)

    uid = _require_user_id(user_id)
    insert_vote(fb, uid, normalize_email(email), notify_status_change)

    fb.vote_count = Feedback.vote_count + 1
    db.session.flush()
    refresh_total_mrr(fb)

    events.emit(events.VOTE_CAST, project_id=project.id, feedback_id=fb.id, user_id=uid)
    log_event("vote_cast", project_id=project.id, feedback_id=fb.id, vote_count=fb.vote_count)
    return VoteResult(feedback_id=fb.id, vote_count=fb.vote_count, has_voted=True)


@transactional
def remove_vote(project: Project, actor: access.Actor, feedback_id: int, user_id: str) -> VoteResult:
    """Idempotent: removing a vote that does not exist returns the current count."""
    fb = load_feedback_for_update(project, feedback_id)
    access.ensure_can_write(project, actor, access.UNVOTE, fb)

    uid = _require_user_id(user_id)
    vote = db.session.query(Vote).filter_by(feedback_id=fb.id, user_id=uid).one_or_none()
    if vote is not None:
        db.session.delete(vote)
        db.session.flush()
        fb.vote_count = Feedback.vote_count - 1
        db.session.flush()
        refresh_total_mrr(fb)
        events.emit(events.VOTE_REMOVED, project_id=project.id, feedback_id=fb.id, user_id=uid)
        log_event("vote_removed", project_id=project.id, feedback_id=fb.id, vote_count=fb.vote_count)

    return VoteResult(feedback_id=fb.id, vote_count=fb.vote_count, has_voted=False)


@transactional
def unsubscribe(permission_key: Optional[str]) -> bool:
    """One-click opt-out from status emails. Unknown or already used keys succeed too."""
    key = (permission_key or "").strip()
    if not key:
        return True
    vote = db.session.query(Vote).filter_by(permission_key=key).one_or_none()
    if vote is not None:
        vote.notify_status_change = False
        vote.permission_key = None
        log_event("vote_unsubscribed", feedback_id=vote.feedback_id)
    return True


def voted_feedback_ids(feedback_ids: Iterable[int], user_id: Optional[str]) -> Set[int]:
    ids = list(feedback_ids)
    if not user_id or not ids:
        return set()
    rows = db.session.query(Vote.feedback_id).filter(Vote.user_id == user_id, Vote.feedback_id.in_(ids)).all()
    return {r[0] for r in rows}
