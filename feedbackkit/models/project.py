import uuid

from sqlalchemy import func
from feedbackkit.extensions import db
from feedbackkit.billing.plans import plan_for
from feedbackkit.models.feedback import STATUS_CHOICES

DEFAULT_EMAIL_NOTIFY_STATUSES = ["approved", "in_progress", "completed", "rejected"]


def new_api_key() -> str:
    return uuid.uuid4().hex


class Project(db.Model):
    """Tenant container; every feedback item, member and quota belongs to one."""
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # SDK credential; rotate by assigning new_api_key()
    api_key = db.Column(db.String(64), nullable=False, unique=True, default=new_api_key)

    owner_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    is_archived = db.Column(db.Boolean, nullable=False, default=False, server_default=db.false())
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Operator-selectable statuses; "pending" is always present
    allowed_statuses = db.Column(db.JSON, nullable=False, default=lambda: list(STATUS_CHOICES))
    # Status values that trigger voter emails
    email_notify_statuses = db.Column(db.JSON, nullable=False, default=lambda: list(DEFAULT_EMAIL_NOTIFY_STATUSES))
    # kind -> settings, e.g. {"slack": {"webhook_url": "..."}}
    integrations = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    owner = db.relationship("User")

    @property
    def tier(self) -> str:
        return self.owner.subscription_tier if self.owner else "free"

    @property
    def plan(self):
        return plan_for(self.tier)

    def __repr__(self) -> str:
        return f"<Project id={self.id} name={self.name!r} archived={self.is_archived}>"

    def to_dict(self, *, include_api_key: bool = False) -> dict:
        data = dict(
            id=self.id,
            name=self.name,
            description=self.description,
            owner_id=self.owner_id,
            tier=self.tier,
            is_archived=self.is_archived,
            archived_at=self.archived_at.isoformat() if self.archived_at else None,
            allowed_statuses=list(self.allowed_statuses or []),
            email_notify_statuses=list(self.email_notify_statuses or []),
            integrations=sorted((self.integrations or {}).keys()),
            created_at=self.created_at.isoformat() if self.created_at else None,
        )
        if include_api_key:
            data["api_key"] = self.api_key
        return data
