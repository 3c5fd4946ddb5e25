from sqlalchemy import func
from feedbackkit.extensions import db

class Comment(db.Model):
    __tablename__ = "comments"

    id = db.Column(db.Integer, primary_key=True)
    content = db.Column(db.Text, nullable=False)
    user_id = db.Column(db.String(255), nullable=False)
    is_admin = db.Column(db.Boolean, nullable=False, default=False, server_default=db.false())
    feedback_id = db.Column(
        db.Integer,
        db.ForeignKey("feedbacks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    feedback = db.relationship("Feedback", back_populates="comments")

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            feedback_id=self.feedback_id,
            content=self.content,
            user_id=self.user_id,
            is_admin=self.is_admin,
            created_at=self.created_at.isoformat() if self.created_at else None,
        )
