"""
Tier ceilings for resource-creating writes.

check_quota() is pure over (tier, operation, current count). enforce_quota()
takes a row lock on the parent (owner for projects, project for feedback),
re-counts inside the caller's transaction and raises PaymentRequired.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func

from feedbackkit.billing.plans import PLANS, TIER_CHOICES, plan_for
from feedbackkit.errors import PaymentRequired
from feedbackkit.extensions import db
from feedbackkit.models.feedback import Feedback
from feedbackkit.models.project import Project
from feedbackkit.models.user import User
from feedbackkit.services.transactions import lock_row

CREATE_PROJECT = "create_project"
SUBMIT_FEEDBACK = "submit_feedback"
ADD_MEMBER = "add_member"
CONFIGURE_INTEGRATION = "configure_integration"
CONFIGURE_STATUSES = "configure_statuses"

_FEATURE_FLAGS = {
    ADD_MEMBER: "can_invite_members",
    CONFIGURE_INTEGRATION: "has_integrations",
    CONFIGURE_STATUSES: "has_configurable_statuses",
}


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    reason: Optional[str] = None
    limit: Optional[int] = None
    current: Optional[int] = None
    required_tier: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


def _limit_for(plan, operation: str) -> Optional[int]:
    if operation == CREATE_PROJECT:
        return plan.max_projects
    if operation == SUBMIT_FEEDBACK:
        return plan.max_feedback_per_project
    raise ValueError(f"{operation!r} has no count limit")


def _cheapest_tier(predicate) -> Optional[str]:
    for tier in TIER_CHOICES:
        if predicate(PLANS[tier]):
            return tier
    return None


def check_quota(tier: Optional[str], operation: str, current: int = 0) -> QuotaDecision:
    """May an owner on `tier` perform `operation` when `current` resources already exist?"""
    plan = plan_for(tier)

    if operation in _FEATURE_FLAGS:
        flag = _FEATURE_FLAGS[operation]
        if getattr(plan, flag):
            return QuotaDecision(True)
        required = _cheapest_tier(lambda p: getattr(p, flag))
        return QuotaDecision(
            False,
            reason=f"This feature requires the {required} plan",
            required_tier=required,
        )

    limit = _limit_for(plan, operation)
    if limit is None or current < limit:
        return QuotaDecision(True, limit=limit, current=current)

    def _fits(p):
        nxt = _limit_for(p, operation)
        return nxt is None or current < nxt

    required = _cheapest_tier(_fits)
    if operation == CREATE_PROJECT:
        reason = f"Your plan allows {limit} project(s)"
    else:
        reason = f"This project has reached its limit of {limit} feedback items"
    return QuotaDecision(False, reason=reason, limit=limit, current=current, required_tier=required)


def _raise(tier: str, decision: QuotaDecision) -> None:
    raise PaymentRequired(
        decision.reason,
        current_tier=tier,
        required_tier=decision.required_tier,
        limit=decision.limit,
        current=decision.current,
    )


def count_projects(owner_id: int) -> int:
    return db.session.query(func.count(Project.id)).filter(Project.owner_id == owner_id).scalar() or 0


def count_active_feedback(project_id: int) -> int:
    return (
        db.session.query(func.count(Feedback.id))
        .filter(Feedback.project_id == project_id, Feedback.active())
        .scalar()
        or 0
    )


def enforce_quota(target, operation: str) -> None:
    """
    Raise PaymentRequired if `operation` would exceed the owner's tier.

    `target` is the owning User for CREATE_PROJECT and the Project otherwise.
    A User may also be passed for a feature gate, to check a prospective
    owner's own tier (ownership transfer). Must run inside the transaction
    that performs the insert.
    """
    if isinstance(target, User):
        owner = lock_row(db.session.query(User).filter(User.id == target.id)).one()
        tier = owner.subscription_tier
        current = count_projects(owner.id) if operation == CREATE_PROJECT else 0
    else:
        project = target
        if operation == SUBMIT_FEEDBACK:
            lock_row(db.session.query(Project).filter(Project.id == project.id)).one()
            current = count_active_feedback(project.id)
        else:
            current = 0
        tier = project.tier

    decision = check_quota(tier, operation, current)
    if not decision:
        _raise(tier, decision)
