from sqlalchemy import func, UniqueConstraint
from feedbackkit.extensions import db

class Vote(db.Model):
    __tablename__ = "votes"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(255), nullable=False)
    feedback_id = db.Column(
        db.Integer,
        db.ForeignKey("feedbacks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Status-change email opt-in; permission_key is the one-click unsubscribe token
    email = db.Column(db.String(320), nullable=True)
    notify_status_change = db.Column(db.Boolean, nullable=False, default=False, server_default=db.false())
    permission_key = db.Column(db.String(64), nullable=True, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    feedback = db.relationship("Feedback", back_populates="votes")

    __table_args__ = (
        # Source of truth for one-vote-per-user; concurrent inserts lose here
        UniqueConstraint("user_id", "feedback_id", name="uq_votes_user_feedback"),
    )

    def __repr__(self) -> str:
        return f"<Vote id={self.id} feedback_id={self.feedback_id} user_id={self.user_id!r}>"
