from flask import jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from sqlalchemy import func

from feedbackkit.errors import Unauthorized, ValidationError
from feedbackkit.extensions import db, limiter
from feedbackkit.models.user import User
from feedbackkit.utils.validators import json_object
from . import bp


def _login_email_scope():
    data_json = request.get_json(silent=True)
    email = data_json.get("email") if isinstance(data_json, dict) else None
    email = str(email or "").strip().lower()
    # Keep a stable scope even if email is blank
    return f"login-email:{email or 'missing'}"


def _user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "subscription_tier": user.subscription_tier,
        "notify_status_changes": user.notify_status_changes,
        "notify_new_feedback": user.notify_new_feedback,
    }


@bp.get("/csrf")
def csrf_token():
    """Token for the X-CSRFToken header on session-authenticated writes."""
    return jsonify({"csrf_token": generate_csrf()}), 200


@bp.post("/login")
@limiter.limit("10 per minute; 100 per hour")              # per-IP (anon -> IP via _rate_limit_key)
@limiter.limit("5 per minute; 20 per hour", key_func=_login_email_scope)  # per-account
def login():
    data = json_object(request.get_json(silent=True))
    email = str(data.get("email") or "").strip()
    password = data.get("password") or ""

    if not email or not password:
        raise ValidationError("Email and password are required")

    user = db.session.execute(
        db.select(User).where(func.lower(User.email) == func.lower(email))
    ).scalar_one_or_none()

    if not user or not user.check_password(password) or not user.is_active:
        raise Unauthorized("Invalid credentials")

    login_user(user)
    return jsonify(_user_payload(user)), 200


@bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"ok": True}), 200


@bp.get("/me")
@login_required
def me():
    return jsonify(_user_payload(current_user)), 200


@bp.put("/me/notifications")
@login_required
def update_notifications():
    """Personal defaults; per-project overrides live under /projects/<id>/preferences."""
    data = json_object(request.get_json(silent=True))
    for name in ("notify_status_changes", "notify_new_feedback"):
        if name in data:
            if not isinstance(data[name], bool):
                raise ValidationError(f"{name} must be a boolean", field=name)
            setattr(current_user, name, data[name])
    db.session.commit()
    return jsonify(_user_payload(current_user)), 200
