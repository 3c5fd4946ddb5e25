from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from sqlalchemy import func, CheckConstraint
from feedbackkit.extensions import db, login_manager
from feedbackkit.billing.plans import TIER_FREE

class User(db.Model, UserMixin):
    """Dashboard operator. Owns projects; the owner's tier is the project's tier."""
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)  # stored lower-cased
    name = db.Column(db.String(255), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    subscription_tier = db.Column(db.String(16), nullable=False, default=TIER_FREE, server_default=TIER_FREE)

    # Personal notification preferences (per-project overrides live in ProjectMemberPreference)
    notify_status_changes = db.Column(db.Boolean, nullable=False, default=True)
    notify_new_feedback = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("subscription_tier IN ('free','pro','team')", name="ck_users_tier_valid"),
    )

    # helpers
    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def get_id(self) -> str:
        return str(self.id)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} tier={self.subscription_tier!r}>"

@login_manager.user_loader
def load_user(user_id: str):
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None
