from dataclasses import dataclass
from typing import Dict, Optional

from flask import current_app

TIER_FREE = "free"
TIER_PRO = "pro"
TIER_TEAM = "team"
TIER_CHOICES = (TIER_FREE, TIER_PRO, TIER_TEAM)

_RANK = {TIER_FREE: 0, TIER_PRO: 1, TIER_TEAM: 2}


@dataclass(frozen=True)
class Plan:
    tier: str
    max_projects: Optional[int]            # None = unlimited
    max_feedback_per_project: Optional[int]
    can_invite_members: bool
    has_integrations: bool
    has_configurable_statuses: bool


# Canonical tier table
PLANS: Dict[str, Plan] = {
    TIER_FREE: Plan(TIER_FREE, max_projects=1, max_feedback_per_project=10,
                    can_invite_members=False, has_integrations=False, has_configurable_statuses=False),
    TIER_PRO: Plan(TIER_PRO, max_projects=2, max_feedback_per_project=None,
                   can_invite_members=False, has_integrations=True, has_configurable_statuses=True),
    TIER_TEAM: Plan(TIER_TEAM, max_projects=None, max_feedback_per_project=None,
                    can_invite_members=True, has_integrations=True, has_configurable_statuses=True),
}


def plan_for(tier: Optional[str]) -> Plan:
    """Unknown or missing tiers fall back to the free plan."""
    return PLANS.get(tier or TIER_FREE, PLANS[TIER_FREE])


def meets_requirement(tier: Optional[str], required: str) -> bool:
    return _RANK.get(tier or TIER_FREE, 0) >= _RANK[required]


def price_id_for(tier: str, interval: str) -> Optional[str]:
    """
    Resolve the Stripe Price for a paid tier from config.
    We key off known Price IDs in config to avoid brittle conditionals.
    """
    cfg = current_app.config
    prices = {
        (TIER_PRO, "monthly"): cfg.get("STRIPE_PRICE_PRO_MONTHLY"),
        (TIER_PRO, "annual"): cfg.get("STRIPE_PRICE_PRO_ANNUAL"),
        (TIER_TEAM, "monthly"): cfg.get("STRIPE_PRICE_TEAM_MONTHLY"),
        (TIER_TEAM, "annual"): cfg.get("STRIPE_PRICE_TEAM_ANNUAL"),
    }
    return prices.get((tier, interval))
