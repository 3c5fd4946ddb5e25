"""Domain events emitted by the core and consumed by delivery collaborators."""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from feedbackkit.extensions import db
from feedbackkit.models.outbox_event import OutboxEvent

FEEDBACK_CREATED = "feedback.created"
FEEDBACK_STATUS_CHANGED = "feedback.status_changed"
FEEDBACK_MERGED = "feedback.merged"
VOTE_CAST = "vote.cast"
VOTE_REMOVED = "vote.removed"
PROJECT_INVITE_CREATED = "project.invite_created"
PROJECT_OWNERSHIP_TRANSFERRED = "project.ownership_transferred"

EVENT_TYPES = (
    FEEDBACK_CREATED, FEEDBACK_STATUS_CHANGED, FEEDBACK_MERGED, VOTE_CAST, VOTE_REMOVED,
    PROJECT_INVITE_CREATED, PROJECT_OWNERSHIP_TRANSFERRED,
)


@dataclass(frozen=True)
class LifecycleEvent:
    type: str
    project_id: int
    feedback_id: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def old_status(self) -> Optional[str]:
        return self.payload.get("old_status")

    @property
    def new_status(self) -> Optional[str]:
        return self.payload.get("new_status")

    @classmethod
    def from_row(cls, row: OutboxEvent) -> "LifecycleEvent":
        return cls(type=row.type, project_id=row.project_id, feedback_id=row.feedback_id, payload=dict(row.payload or {}))


def emit(event_type: str, *, project_id: int, feedback_id: Optional[int] = None, **payload: Any) -> OutboxEvent:
    """Queue an event in the current transaction; it is only visible once the caller commits."""
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown event type {event_type!r}")
    row = OutboxEvent(type=event_type, project_id=project_id, feedback_id=feedback_id, payload=payload)
    db.session.add(row)
    return row
