"""
Email invites for people who should join a project.

An operator invites an address with a role; the invitee receives an 8-character
code by email (through the outbox) and accepts it after signing in with that
same address. Invites expire after a week and can be used once.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from feedbackkit import events
from feedbackkit.errors import Conflict, Forbidden, NotFound, ValidationError
from feedbackkit.extensions import db
from feedbackkit.models.project import Project
from feedbackkit.models.project_invite import ProjectInvite, default_expiry, new_invite_code
from feedbackkit.models.project_member import ProjectMember, ROLE_CHOICES
from feedbackkit.models.user import User
from feedbackkit.observability import log_event
from feedbackkit.services import access, quota
from feedbackkit.services.transactions import lock_row, transactional
from feedbackkit.utils.validators import clean_str, normalize_email


def _normalize_code(code) -> str:
    c = clean_str(code, max_len=16)
    if c is None:
        raise ValidationError("code is required", field="code")
    return c.upper()


def _pending_for(project_id: int, email: str):
    return (
        db.session.query(ProjectInvite)
        .filter(
            ProjectInvite.project_id == project_id,
            ProjectInvite.email == email,
            ProjectInvite.accepted_at.is_(None),
        )
        .one_or_none()
    )


@transactional
def invite_member(project: Project, actor: access.Actor, email, role: str = "member") -> ProjectInvite:
    """Create (or refresh) the pending invite for `email` and queue the email."""
    access.ensure_can_write(project, actor, access.MANAGE_MEMBERS)
    quota.enforce_quota(project, quota.ADD_MEMBER)

    if role not in ROLE_CHOICES:
        raise ValidationError(f"Invalid role {role!r}", field="role")
    email = normalize_email(email)
    if email is None:
        raise ValidationError("email is required", field="email")

    user = db.session.query(User).filter(User.email == email).one_or_none()
    if user is not None:
        if user.id == project.owner_id:
            raise Conflict("The project owner is already a member")
        if db.session.query(ProjectMember).filter_by(project_id=project.id, user_id=user.id).count():
            raise Conflict("User is already a member of this project")

    invite = _pending_for(project.id, email)
    if invite is None:
        invite = ProjectInvite(project_id=project.id, email=email)
        db.session.add(invite)
    else:
        # Re-inviting issues a fresh code and restarts the clock
        invite.code = new_invite_code()
        invite.expires_at = default_expiry()
    invite.role = role
    invite.invited_by_id = actor.user_id
    db.session.flush()

    events.emit(events.PROJECT_INVITE_CREATED, project_id=project.id, invite_id=invite.id)
    log_event("member_invited", project_id=project.id, invite_id=invite.id, role=role)
    return invite


def list_invites(project: Project, actor: access.Actor) -> List[ProjectInvite]:
    """Pending invites; readable on archived projects too."""
    if actor.role not in access.PRIVILEGED_ROLES:
        raise Forbidden("Only project owners or admins can see invites")
    return (
        db.session.query(ProjectInvite)
        .filter(ProjectInvite.project_id == project.id, ProjectInvite.accepted_at.is_(None))
        .order_by(ProjectInvite.created_at.desc(), ProjectInvite.id.desc())
        .all()
    )


@transactional
def revoke_invite(project: Project, actor: access.Actor, invite_id: int) -> None:
    access.ensure_can_write(project, actor, access.MANAGE_MEMBERS)
    invite = db.session.query(ProjectInvite).filter_by(id=invite_id, project_id=project.id).one_or_none()
    if invite is None or invite.is_accepted:
        raise NotFound("Invite not found")
    db.session.delete(invite)
    log_event("invite_revoked", project_id=project.id, invite_id=invite_id)


def _usable(code) -> ProjectInvite:
    invite = db.session.query(ProjectInvite).filter(ProjectInvite.code == _normalize_code(code)).one_or_none()
    if invite is None:
        raise NotFound("Invite not found")
    if invite.is_accepted:
        raise Conflict("This invite has already been used")
    if invite.is_expired:
        raise Conflict("This invite has expired")
    return invite


def preview_invite(user: User, code) -> dict:
    invite = _usable(code)
    return {
        "project_name": invite.project.name,
        "project_description": invite.project.description,
        "invited_by_name": (invite.invited_by.name or invite.invited_by.email) if invite.invited_by else None,
        "role": invite.role,
        "expires_at": invite.expires_at.isoformat(),
        "invite_email": invite.email,
        "email_matches": invite.email == (user.email or "").lower(),
    }


@transactional
def accept_invite(user: User, code) -> ProjectMember:
    invite = _usable(code)
    lock_row(db.session.query(ProjectInvite).filter(ProjectInvite.id == invite.id)).one()
    if invite.email != (user.email or "").lower():
        raise Forbidden("This invite was sent to a different email address")

    project = invite.project
    if project.is_archived:
        raise Forbidden("This project is archived and does not accept changes")
    if user.id == project.owner_id:
        raise Conflict("You already own this project")
    # The owner may have downgraded since inviting
    quota.enforce_quota(project, quota.ADD_MEMBER)

    member = db.session.query(ProjectMember).filter_by(project_id=project.id, user_id=user.id).one_or_none()
    if member is not None:
        raise Conflict("You are already a member of this project")
    member = ProjectMember(project_id=project.id, user_id=user.id, role=invite.role)
    db.session.add(member)
    invite.accepted_at = datetime.now(timezone.utc)
    db.session.flush()

    log_event("invite_accepted", project_id=project.id, invite_id=invite.id, user_id=user.id, role=invite.role)
    return member
