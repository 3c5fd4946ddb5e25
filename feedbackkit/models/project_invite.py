import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, CheckConstraint
from feedbackkit.extensions import db
from feedbackkit.models.project_member import ROLE_MEMBER

INVITE_TTL_DAYS = 7
# No 0/O, 1/I/L: codes are typed in by hand
INVITE_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
INVITE_CODE_LENGTH = 8


def new_invite_code() -> str:
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


def default_expiry() -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=INVITE_TTL_DAYS)


class ProjectInvite(db.Model):
    """Pending membership for an email address, accepted with a short code."""
    __tablename__ = "project_invites"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    invited_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    email = db.Column(db.String(320), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default=ROLE_MEMBER, server_default=ROLE_MEMBER)
    code = db.Column(db.String(16), nullable=False, unique=True, default=new_invite_code)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, default=default_expiry)
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    project = db.relationship("Project")
    invited_by = db.relationship("User")

    __table_args__ = (
        CheckConstraint("role IN ('admin','member','viewer')", name="ck_project_invites_role_valid"),
    )

    @property
    def is_accepted(self) -> bool:
        return self.accepted_at is not None

    @property
    def is_expired(self) -> bool:
        expires = self.expires_at
        # SQLite hands back naive datetimes
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) > expires

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            project_id=self.project_id,
            email=self.email,
            role=self.role,
            code=self.code,
            expires_at=self.expires_at.isoformat() if self.expires_at else None,
            accepted_at=self.accepted_at.isoformat() if self.accepted_at else None,
            created_at=self.created_at.isoformat() if self.created_at else None,
        )
