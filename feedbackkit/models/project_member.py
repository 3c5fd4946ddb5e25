from sqlalchemy import func, CheckConstraint, UniqueConstraint
from feedbackkit.extensions import db

# Keep simple text+CHECK for evolvable roles (no DB enum migration pain).
# The owner is Project.owner_id, never a membership row.
ROLE_OWNER = "owner"
ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"
ROLE_VIEWER = "viewer"
ROLE_CHOICES = (ROLE_ADMIN, ROLE_MEMBER, ROLE_VIEWER)

class ProjectMember(db.Model):
    __tablename__ = "project_members"

    id = db.Column(db.Integer, primary_key=True)

    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    role = db.Column(db.String(20), nullable=False, server_default=ROLE_MEMBER, default=ROLE_MEMBER)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    user = db.relationship("User")

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_members_project_user"),
        CheckConstraint(
            "role IN ('admin','member','viewer')",
            name="ck_project_members_role_valid",
        ),
    )


class ProjectMemberPreference(db.Model):
    """Per-project notification overrides; NULL means use the personal preference."""
    __tablename__ = "project_member_preferences"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    muted = db.Column(db.Boolean, nullable=False, default=False, server_default=db.false())
    notify_status_changes = db.Column(db.Boolean, nullable=True)
    notify_new_feedback = db.Column(db.Boolean, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_member_prefs_project_user"),
    )
