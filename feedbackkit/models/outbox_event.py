from sqlalchemy import func
from feedbackkit.extensions import db

class OutboxEvent(db.Model):
    """
    Domain event written in the same transaction as the change that caused it.
    Drained by services.dispatcher; dispatched_at stays NULL until a handler succeeds.
    """
    __tablename__ = "outbox_events"

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(64), nullable=False, index=True)
    project_id = db.Column(db.Integer, nullable=False, index=True)
    feedback_id = db.Column(db.Integer, nullable=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    last_error = db.Column(db.String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<OutboxEvent id={self.id} type={self.type!r} dispatched={self.dispatched_at is not None}>"
