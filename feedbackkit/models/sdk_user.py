from sqlalchemy import func, UniqueConstraint
from feedbackkit.extensions import db

class SdkUser(db.Model):
    """End user of a client app, as reported by the SDK. Holds revenue (MRR) for weighting."""
    __tablename__ = "sdk_users"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.String(255), nullable=False)
    mrr = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=True)

    first_seen_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_sdk_users_project_user"),
    )

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            project_id=self.project_id,
            user_id=self.user_id,
            mrr=self.mrr,
            first_seen_at=self.first_seen_at.isoformat() if self.first_seen_at else None,
            last_seen_at=self.last_seen_at.isoformat() if self.last_seen_at else None,
        )
