"""Projects, membership and per-project settings."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from feedbackkit import events
from feedbackkit.errors import Conflict, NotFound, Unauthorized, ValidationError
from feedbackkit.extensions import db
from feedbackkit.models.feedback import STATUS_CHOICES, STATUS_PENDING
from feedbackkit.models.project import Project, new_api_key
from feedbackkit.models.project_member import ProjectMember, ProjectMemberPreference, ROLE_ADMIN, ROLE_CHOICES
from feedbackkit.models.user import User
from feedbackkit.observability import log_event
from feedbackkit.services import access, quota
from feedbackkit.services.transactions import lock_row, transactional
from feedbackkit.utils.validators import clean_str, normalize_email

INTEGRATION_KINDS = (
    "slack", "github", "gitlab", "linear", "jira", "notion", "trello",
    "clickup", "asana", "basecamp", "airtable", "monday",
)

_UNSET = object()


# ---- lookup -----------------------------------------------------------------

def project_for_api_key(api_key: Optional[str]) -> Project:
    key = (api_key or "").strip()
    if not key:
        raise Unauthorized("Missing X-API-Key header")
    project = db.session.query(Project).filter(Project.api_key == key).one_or_none()
    if project is None:
        raise Unauthorized("Invalid API key")
    return project


def project_for_user(user: User, project_id: int) -> Tuple[Project, access.Actor]:
    """The project plus the caller as an Actor. NotFound when the user has no role on it."""
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFound("Project not found")
    actor = access.Actor.from_user(user, project)
    if actor.role is None:
        raise NotFound("Project not found")
    return project, actor


def projects_for_user(user: User) -> List[Project]:
    member_of = db.session.query(ProjectMember.project_id).filter(ProjectMember.user_id == user.id)
    return (
        db.session.query(Project)
        .filter((Project.owner_id == user.id) | (Project.id.in_(member_of)))
        .order_by(Project.created_at.asc(), Project.id.asc())
        .all()
    )


# ---- lifecycle --------------------------------------------------------------

@transactional
def create_project(owner: User, name, description=None) -> Project:
    name = clean_str(name)
    if name is None:
        raise ValidationError("name is required", field="name")

    quota.enforce_quota(owner, quota.CREATE_PROJECT)

    project = Project(name=name, description=clean_str(description, max_len=2000), owner_id=owner.id)
    db.session.add(project)
    db.session.flush()
    log_event("project_created", project_id=project.id, owner_id=owner.id, tier=owner.subscription_tier)
    return project


@transactional
def set_archived(project: Project, actor: access.Actor, archived: bool) -> Project:
    access.ensure_can_write(project, actor, access.ARCHIVE)
    if bool(archived) != bool(project.is_archived):
        project.is_archived = bool(archived)
        project.archived_at = datetime.now(timezone.utc) if archived else None
        log_event("project_archived" if archived else "project_unarchived", project_id=project.id)
    return project


@transactional
def regenerate_api_key(project: Project, actor: access.Actor) -> Project:
    access.ensure_can_write(project, actor, access.MANAGE_SETTINGS)
    project.api_key = new_api_key()
    log_event("project_api_key_rotated", project_id=project.id)
    return project


@transactional
def transfer_ownership(project: Project, actor: access.Actor, *, new_owner_id=None, email=None) -> Project:
    """
    Hand the project to another account. The new owner's membership row (if
    any) is dropped and the previous owner stays on as admin.

    A project with members needs a new owner whose own tier allows members.
    """
    access.ensure_can_write(project, actor, access.TRANSFER_OWNERSHIP)

    email = normalize_email(email)
    if new_owner_id is None and email is None:
        raise ValidationError("new_owner_id or email is required")
    if new_owner_id is not None:
        if isinstance(new_owner_id, bool):
            raise ValidationError("new_owner_id must be an integer", field="new_owner_id")
        try:
            new_owner = db.session.get(User, int(new_owner_id))
        except (TypeError, ValueError):
            raise ValidationError("new_owner_id must be an integer", field="new_owner_id")
    else:
        new_owner = db.session.query(User).filter(User.email == email).one_or_none()
    if new_owner is None:
        raise NotFound("No account found for the new owner")

    previous_owner_id = project.owner_id
    if new_owner.id == previous_owner_id:
        raise ValidationError("You already own this project")

    lock_row(db.session.query(Project).filter(Project.id == project.id)).one()
    member_count = db.session.query(ProjectMember).filter_by(project_id=project.id).count()
    if member_count:
        quota.enforce_quota(new_owner, quota.ADD_MEMBER)
    quota.enforce_quota(new_owner, quota.CREATE_PROJECT)

    db.session.query(ProjectMember).filter_by(project_id=project.id, user_id=new_owner.id).delete()
    project.owner = new_owner
    db.session.add(ProjectMember(project_id=project.id, user_id=previous_owner_id, role=ROLE_ADMIN))
    db.session.flush()

    events.emit(events.PROJECT_OWNERSHIP_TRANSFERRED, project_id=project.id,
                new_owner_id=new_owner.id, previous_owner_id=previous_owner_id)
    log_event("project_ownership_transferred", project_id=project.id,
              new_owner_id=new_owner.id, previous_owner_id=previous_owner_id, members=member_count)
    return project


# ---- settings ---------------------------------------------------------------

def _validate_statuses(statuses, field: str) -> List[str]:
    if not isinstance(statuses, (list, tuple)):
        raise ValidationError(f"{field} must be a list", field=field)
    out = []
    for s in statuses:
        if s not in STATUS_CHOICES:
            raise ValidationError(f"Invalid status {s!r}", field=field)
        if s not in out:
            out.append(s)
    return out


@transactional
def update_allowed_statuses(project: Project, actor: access.Actor, statuses) -> Project:
    """pending can't be removed and always comes first."""
    access.ensure_can_write(project, actor, access.MANAGE_SETTINGS)
    quota.enforce_quota(project, quota.CONFIGURE_STATUSES)
    cleaned = [s for s in _validate_statuses(statuses, "allowed_statuses") if s != STATUS_PENDING]
    project.allowed_statuses = [STATUS_PENDING] + cleaned
    return project


@transactional
def update_email_notify_statuses(project: Project, actor: access.Actor, statuses) -> Project:
    access.ensure_can_write(project, actor, access.MANAGE_SETTINGS)
    project.email_notify_statuses = _validate_statuses(statuses, "email_notify_statuses")
    return project


@transactional
def configure_integration(project: Project, actor: access.Actor, kind: str, settings: Optional[dict]) -> Project:
    """Store settings for an issue-tracker/chat sink; empty settings remove it."""
    access.ensure_can_write(project, actor, access.MANAGE_SETTINGS)
    if kind not in INTEGRATION_KINDS:
        raise ValidationError(f"Unknown integration {kind!r}", field="kind")
    if settings is not None and not isinstance(settings, dict):
        raise ValidationError("settings must be an object", field="settings")

    current = dict(project.integrations or {})
    if settings:
        quota.enforce_quota(project, quota.CONFIGURE_INTEGRATION)
        current[kind] = settings
    else:
        current.pop(kind, None)
    project.integrations = current
    log_event("integration_configured", project_id=project.id, kind=kind, enabled=bool(settings))
    return project


# ---- members ----------------------------------------------------------------

@transactional
def add_member(project: Project, actor: access.Actor, email, role: str = "member") -> ProjectMember:
    access.ensure_can_write(project, actor, access.MANAGE_MEMBERS)
    quota.enforce_quota(project, quota.ADD_MEMBER)

    if role not in ROLE_CHOICES:
        raise ValidationError(f"Invalid role {role!r}", field="role")
    email = normalize_email(email)
    if email is None:
        raise ValidationError("email is required", field="email")
    user = db.session.query(User).filter(User.email == email).one_or_none()
    if user is None:
        raise NotFound("No account with that email")
    if user.id == project.owner_id:
        raise Conflict("The project owner is already a member")

    member = ProjectMember(project_id=project.id, user_id=user.id, role=role)
    db.session.add(member)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise Conflict("User is already a member of this project") from exc
    log_event("member_added", project_id=project.id, user_id=user.id, role=role)
    return member


@transactional
def remove_member(project: Project, actor: access.Actor, user_id: int) -> None:
    access.ensure_can_write(project, actor, access.MANAGE_MEMBERS)
    member = db.session.query(ProjectMember).filter_by(project_id=project.id, user_id=user_id).one_or_none()
    if member is None:
        raise NotFound("Member not found")
    db.session.delete(member)
    log_event("member_removed", project_id=project.id, user_id=user_id)


@transactional
def set_member_preference(project: Project, user: User, *, muted=_UNSET, notify_status_changes=_UNSET,
                          notify_new_feedback=_UNSET) -> ProjectMemberPreference:
    """Upsert the caller's per-project override. None clears an override back to the personal setting."""
    if access.resolve_role(project, user.id) is None:
        raise NotFound("Project not found")

    pref = db.session.query(ProjectMemberPreference).filter_by(project_id=project.id, user_id=user.id).one_or_none()
    if pref is None:
        pref = ProjectMemberPreference(project_id=project.id, user_id=user.id, muted=False)
        db.session.add(pref)
    if muted is not _UNSET:
        pref.muted = bool(muted)
    if notify_status_changes is not _UNSET:
        pref.notify_status_changes = notify_status_changes
    if notify_new_feedback is not _UNSET:
        pref.notify_new_feedback = notify_new_feedback
    db.session.flush()
    return pref
