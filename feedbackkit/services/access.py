"""
Access policy: may this actor perform this operation on this project/feedback?

Two kinds of actor exist. SDK callers present a project API key and carry no
user role; operators are dashboard users whose role is derived from project
ownership or a ProjectMember row.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from feedbackkit.errors import Forbidden
from feedbackkit.extensions import db
from feedbackkit.models.feedback import Feedback
from feedbackkit.models.project import Project
from feedbackkit.models.project_member import (
    ProjectMember,
    ROLE_OWNER,
    ROLE_ADMIN,
    ROLE_MEMBER,
)

ACTOR_API_KEY = "api_key"
ACTOR_USER = "user"

# Operations
READ = "read"
SUBMIT = "submit"
VOTE = "vote"
UNVOTE = "unvote"
COMMENT = "comment"
REGISTER_USER = "register_user"
UPDATE_STATUS = "update_status"
UPDATE_CATEGORY = "update_category"
UPDATE_CONTENT = "update_content"
DELETE = "delete"
DELETE_COMMENT = "delete_comment"
MERGE = "merge"
MANAGE_SETTINGS = "manage_settings"
MANAGE_MEMBERS = "manage_members"
ARCHIVE = "archive"
TRANSFER_OWNERSHIP = "transfer_ownership"
TRACK_EVENT = "track_event"

PRIVILEGED_ROLES = frozenset({ROLE_OWNER, ROLE_ADMIN})
WRITER_ROLES = frozenset({ROLE_OWNER, ROLE_ADMIN, ROLE_MEMBER})

# Operations that need the project's API credential and nothing else
_SDK_OPERATIONS = frozenset({SUBMIT, VOTE, UNVOTE, REGISTER_USER, TRACK_EVENT})
_PRIVILEGED_OPERATIONS = frozenset({DELETE, DELETE_COMMENT, MERGE, MANAGE_SETTINGS, MANAGE_MEMBERS})
_WRITER_OPERATIONS = frozenset({UPDATE_STATUS, UPDATE_CATEGORY, UPDATE_CONTENT})
# Operations closed once feedback reaches a terminal status
_OPEN_ONLY_OPERATIONS = frozenset({VOTE, COMMENT})


@dataclass(frozen=True)
class Actor:
    kind: str
    project_id: Optional[int] = None   # project whose API key was presented
    user_id: Optional[int] = None      # operator id
    role: Optional[str] = None         # operator role within the project

    @classmethod
    def from_api_key(cls, project: Project) -> "Actor":
        return cls(kind=ACTOR_API_KEY, project_id=project.id)

    @classmethod
    def from_user(cls, user, project: Project) -> "Actor":
        return cls(kind=ACTOR_USER, user_id=user.id, role=resolve_role(project, user.id))

    @property
    def is_api_key(self) -> bool:
        return self.kind == ACTOR_API_KEY


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def deny(reason: str) -> Decision:
    return Decision(False, reason)


def resolve_role(project: Project, user_id: int) -> Optional[str]:
    """owner | admin | member | viewer, or None when the user has no access."""
    if project.owner_id == user_id:
        return ROLE_OWNER
    m = db.session.query(ProjectMember).filter_by(project_id=project.id, user_id=user_id).one_or_none()
    return m.role if m else None


def _has_access(project: Project, actor: Actor) -> bool:
    if actor.is_api_key:
        return actor.project_id == project.id
    return actor.role is not None


def can_write(project: Project, actor: Actor, operation: str, feedback: Optional[Feedback] = None) -> Decision:
    """Evaluate the policy rules in order; the first deny wins."""
    if not _has_access(project, actor):
        return deny("You don't have access to this project")

    if operation == READ:
        return ALLOW

    # 1. Archived projects are read-only, apart from unvote and privileged deletes/unarchive
    if project.is_archived:
        privileged = actor.role in PRIVILEGED_ROLES
        exempt = (
            operation == UNVOTE
            or (operation == DELETE and privileged)
            or (operation == ARCHIVE and actor.role == ROLE_OWNER)
        )
        if not exempt:
            return deny("This project is archived and does not accept changes")

    # 2. Voting/commenting closed on terminal statuses
    if operation in _OPEN_ONLY_OPERATIONS and feedback is not None and feedback.is_closed:
        return deny(f"Voting and commenting are closed for {feedback.status} feedback")

    # 3. Role check
    if operation in _SDK_OPERATIONS:
        return ALLOW if actor.is_api_key else deny("A project API key is required")
    if operation == COMMENT:
        if actor.is_api_key or actor.role in WRITER_ROLES:
            return ALLOW
        return deny("Viewers cannot comment")
    if operation in _PRIVILEGED_OPERATIONS:
        if actor.role in PRIVILEGED_ROLES:
            return ALLOW
        return deny("Only project owners or admins can do this")
    if operation in _WRITER_OPERATIONS:
        if actor.role in WRITER_ROLES:
            return ALLOW
        return deny("You need write access to this project")
    if operation == ARCHIVE:
        return ALLOW if actor.role == ROLE_OWNER else deny("Only the project owner can archive or unarchive")
    if operation == TRANSFER_OWNERSHIP:
        return ALLOW if actor.role == ROLE_OWNER else deny("Only the project owner can transfer ownership")
    return deny(f"Unknown operation {operation!r}")


def ensure_can_write(project: Project, actor: Actor, operation: str, feedback: Optional[Feedback] = None) -> None:
    decision = can_write(project, actor, operation, feedback)
    if not decision:
        raise Forbidden(decision.reason)
