from __future__ import annotations

from sqlalchemy import func, CheckConstraint
from feedbackkit.extensions import db

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_IN_PROGRESS = "in_progress"
STATUS_TESTFLIGHT = "testflight"
STATUS_COMPLETED = "completed"
STATUS_REJECTED = "rejected"
STATUS_CHOICES = (
    STATUS_PENDING,
    STATUS_APPROVED,
    STATUS_IN_PROGRESS,
    STATUS_TESTFLIGHT,
    STATUS_COMPLETED,
    STATUS_REJECTED,
)
# Voting and commenting are closed in these states
CLOSED_STATUSES = frozenset({STATUS_COMPLETED, STATUS_REJECTED})

CATEGORY_CHOICES = ("feature_request", "bug_report", "improvement", "other")

TITLE_MAX = 200
DESCRIPTION_MAX = 5000
REJECTION_REASON_MAX = 500


class Feedback(db.Model):
    __tablename__ = "feedbacks"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    title = db.Column(db.String(TITLE_MAX), nullable=False)
    description = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING, server_default=STATUS_PENDING)
    category = db.Column(db.String(32), nullable=False, default="feature_request")

    # Submitting SDK user (opaque string from the client app)
    user_id = db.Column(db.String(255), nullable=False)
    user_email = db.Column(db.String(320), nullable=True)

    # Cached aggregates; vote_count always equals the number of Vote rows
    vote_count = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    total_mrr = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=True)

    rejection_reason = db.Column(db.String(REJECTION_REASON_MAX), nullable=True)

    # Merge bookkeeping: a casualty has merged_into_id; a survivor lists absorbed ids
    merged_into_id = db.Column(
        db.Integer,
        db.ForeignKey("feedbacks.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    merged_at = db.Column(db.DateTime(timezone=True), nullable=True)
    merged_feedback_ids = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    votes = db.relationship("Vote", back_populates="feedback", cascade="all, delete-orphan")
    comments = db.relationship("Comment", back_populates="feedback", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("vote_count >= 0", name="ck_feedbacks_vote_count_nonneg"),
        CheckConstraint(
            "status IN ('pending','approved','in_progress','testflight','completed','rejected')",
            name="ck_feedbacks_status_valid",
        ),
        db.Index("ix_feedbacks_project_status", "project_id", "status"),
    )

    @classmethod
    def active(cls):
        """Predicate for listable feedback: merge casualties are soft-deleted."""
        return cls.merged_into_id.is_(None)

    @property
    def is_merged(self) -> bool:
        return self.merged_into_id is not None

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    def __repr__(self) -> str:
        return f"<Feedback id={self.id} project_id={self.project_id} status={self.status!r} votes={self.vote_count}>"

    def to_dict(self, *, has_voted: bool = False, comment_count: int = 0) -> dict:
        return dict(
            id=self.id,
            project_id=self.project_id,
            title=self.title,
            description=self.description,
            status=self.status,
            category=self.category,
            user_id=self.user_id,
            user_email=self.user_email,
            vote_count=self.vote_count,
            has_voted=has_voted,
            comment_count=comment_count,
            total_mrr=self.total_mrr,
            rejection_reason=self.rejection_reason,
            merged_into_id=self.merged_into_id,
            merged_at=self.merged_at.isoformat() if self.merged_at else None,
            merged_feedback_ids=list(self.merged_feedback_ids or []),
            created_at=self.created_at.isoformat() if self.created_at else None,
            updated_at=self.updated_at.isoformat() if self.updated_at else None,
        )
