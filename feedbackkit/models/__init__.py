from .user import User
from .project import Project
from .project_member import (
    ProjectMember,
    ProjectMemberPreference,
    ROLE_OWNER,
    ROLE_ADMIN,
    ROLE_MEMBER,
    ROLE_VIEWER,
)
from .feedback import Feedback
from .vote import Vote
from .comment import Comment
from .sdk_user import SdkUser
from .outbox_event import OutboxEvent
from .email_log import EmailLog
from .view_event import ViewEvent
from .project_invite import ProjectInvite

__all__ = [
    "User",
    "Project",
    "ProjectMember",
    "ProjectMemberPreference",
    "Feedback",
    "Vote",
    "Comment",
    "SdkUser",
    "OutboxEvent",
    "EmailLog",
    "ViewEvent",
    "ProjectInvite",
    "ROLE_OWNER",
    "ROLE_ADMIN",
    "ROLE_MEMBER",
    "ROLE_VIEWER",
]
