"""
Who hears about a lifecycle event.

decide() is pure: it works on plain snapshots so it can be tested without a
database. load_context() does the reads for the dispatcher.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from feedbackkit import events
from feedbackkit.events import LifecycleEvent
from feedbackkit.extensions import db
from feedbackkit.models.feedback import Feedback
from feedbackkit.models.project import Project
from feedbackkit.models.project_member import ProjectMember, ProjectMemberPreference
from feedbackkit.models.user import User
from feedbackkit.models.vote import Vote

KIND_MEMBER = "member"
KIND_VOTER = "voter"

TEMPLATE_STATUS_CHANGE = "status_change"
TEMPLATE_NEW_FEEDBACK = "new_feedback"


@dataclass(frozen=True)
class ProjectSnapshot:
    id: int
    name: str
    email_notify_statuses: Sequence[str] = ()


@dataclass(frozen=True)
class FeedbackSnapshot:
    id: int
    title: str
    status: str
    rejection_reason: Optional[str] = None


@dataclass(frozen=True)
class MemberPrefs:
    """Personal preferences plus the per-project override (None = not overridden)."""
    user_id: int
    email: str
    notify_status_changes: bool = True
    notify_new_feedback: bool = True
    muted: bool = False
    project_notify_status_changes: Optional[bool] = None
    project_notify_new_feedback: Optional[bool] = None

    @property
    def wants_status_changes(self) -> bool:
        if self.muted:
            return False
        if self.project_notify_status_changes is not None:
            return self.project_notify_status_changes
        return self.notify_status_changes

    @property
    def wants_new_feedback(self) -> bool:
        if self.muted:
            return False
        if self.project_notify_new_feedback is not None:
            return self.project_notify_new_feedback
        return self.notify_new_feedback


@dataclass(frozen=True)
class VoterSubscription:
    email: Optional[str]
    notify_status_change: bool
    permission_key: Optional[str] = None


@dataclass(frozen=True)
class Recipient:
    email: str
    kind: str
    template: str
    permission_key: Optional[str] = None


@dataclass
class NotificationContext:
    project: ProjectSnapshot
    feedback: FeedbackSnapshot
    members: List[MemberPrefs] = field(default_factory=list)
    voters: List[VoterSubscription] = field(default_factory=list)


def _key(email: str) -> str:
    return email.strip().lower()


def decide(event: LifecycleEvent, *, project: ProjectSnapshot, members: Sequence[MemberPrefs],
           voters: Sequence[VoterSubscription]) -> List[Recipient]:
    out: List[Recipient] = []
    seen = set()

    def _add(email, kind, template, permission_key=None):
        if not email or _key(email) in seen:
            return
        seen.add(_key(email))
        out.append(Recipient(email=email, kind=kind, template=template, permission_key=permission_key))

    if event.type == events.FEEDBACK_STATUS_CHANGED:
        for m in members:
            if m.wants_status_changes:
                _add(m.email, KIND_MEMBER, TEMPLATE_STATUS_CHANGE)
        if event.new_status in (project.email_notify_statuses or ()):
            for v in voters:
                if v.notify_status_change and v.email:
                    _add(v.email, KIND_VOTER, TEMPLATE_STATUS_CHANGE, v.permission_key)

    elif event.type == events.FEEDBACK_CREATED:
        for m in members:
            if m.wants_new_feedback:
                _add(m.email, KIND_MEMBER, TEMPLATE_NEW_FEEDBACK)

    return out


def _member_prefs(project: Project) -> List[MemberPrefs]:
    user_ids = [project.owner_id] + [
        uid for (uid,) in db.session.query(ProjectMember.user_id).filter(ProjectMember.project_id == project.id).all()
    ]
    users = {u.id: u for u in db.session.query(User).filter(User.id.in_(user_ids), User.is_active.is_(True)).all()}
    overrides = {
        p.user_id: p
        for p in db.session.query(ProjectMemberPreference).filter(ProjectMemberPreference.project_id == project.id).all()
    }

    prefs = []
    for uid in user_ids:  # owner first
        user = users.get(uid)
        if user is None:
            continue
        o = overrides.get(uid)
        prefs.append(MemberPrefs(
            user_id=user.id,
            email=user.email,
            notify_status_changes=user.notify_status_changes,
            notify_new_feedback=user.notify_new_feedback,
            muted=bool(o and o.muted),
            project_notify_status_changes=o.notify_status_changes if o else None,
            project_notify_new_feedback=o.notify_new_feedback if o else None,
        ))
    return prefs


def load_context(event: LifecycleEvent) -> Optional[NotificationContext]:
    """None when the project or the item no longer exists."""
    project = db.session.get(Project, event.project_id)
    fb = db.session.get(Feedback, event.feedback_id) if event.feedback_id else None
    if project is None or fb is None:
        return None

    voters = [
        VoterSubscription(email=v.email, notify_status_change=v.notify_status_change, permission_key=v.permission_key)
        for v in db.session.query(Vote).filter(Vote.feedback_id == fb.id).order_by(Vote.id).all()
    ]
    return NotificationContext(
        project=ProjectSnapshot(
            id=project.id,
            name=project.name,
            email_notify_statuses=tuple(project.email_notify_statuses or ()),
        ),
        feedback=FeedbackSnapshot(id=fb.id, title=fb.title, status=fb.status, rejection_reason=fb.rejection_reason),
        members=_member_prefs(project),
        voters=voters,
    )
