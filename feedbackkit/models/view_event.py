from sqlalchemy import func
from feedbackkit.extensions import db

class ViewEvent(db.Model):
    """Named screen/usage event reported by the SDK, e.g. "feedback_list_opened"."""
    __tablename__ = "view_events"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    event_name = db.Column(db.String(255), nullable=False)
    user_id = db.Column(db.String(255), nullable=False)
    # str -> str only
    properties = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    __table_args__ = (
        db.Index("ix_view_events_project_name", "project_id", "event_name"),
    )

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            project_id=self.project_id,
            event_name=self.event_name,
            user_id=self.user_id,
            properties=self.properties,
            created_at=self.created_at.isoformat() if self.created_at else None,
        )
