from typing import Dict, Any
from urllib.parse import urljoin
from flask import current_app
from stripe import StripeClient
import hashlib, json

from feedbackkit.billing.plans import TIER_PRO, TIER_TEAM, meets_requirement, price_id_for
from feedbackkit.errors import Conflict, ValidationError

INTERVALS = ("monthly", "annual")


def _client() -> StripeClient:
    key = current_app.config.get("STRIPE_SECRET_KEY")
    if not key:
        raise RuntimeError("STRIPE_SECRET_KEY is not configured")
    return StripeClient(key)


def _absolute_url(path: str) -> str:
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/") + "/"
    return urljoin(base, path.lstrip("/"))


def make_idempotency_key(*parts: Any) -> str:
    raw = "|".join(str(p) for p in parts)
    return "checkout:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


def _params_hash(d: Dict[str, Any]) -> str:
    # Stable across runs if params identical; changes when you change fields
    return hashlib.sha256(json.dumps(d, sort_keys=True, separators=(",", ":")).encode("utf-8")).hexdigest()[:16]


def create_checkout_session(*, plan: str, interval: str, user) -> Dict[str, Any]:
    """
    Create a Stripe Checkout Session upgrading `user` to a paid tier.
    Returns: {"id": <session_id>, "url": <redirect_url or None>}
    """
    if plan not in (TIER_PRO, TIER_TEAM):
        raise ValidationError(f"Unknown plan {plan!r}", field="plan")
    if interval not in INTERVALS:
        raise ValidationError(f"Unknown interval {interval!r}", field="interval")
    if meets_requirement(user.subscription_tier, plan):
        raise Conflict(f"Already on the {user.subscription_tier} plan")

    price_id = price_id_for(plan, interval)
    if not price_id:
        raise ValidationError(f"No price configured for {plan}/{interval}", field="plan")

    client = _client()
    params: Dict[str, Any] = {
        "mode": "subscription",
        "line_items": [{"price": price_id, "quantity": 1}],
        "customer_email": user.email,
        "success_url": _absolute_url("billing/success?session_id={CHECKOUT_SESSION_ID}"),
        "cancel_url": _absolute_url("billing/cancelled"),
        "allow_promotion_codes": True,

        # Tax (env-controlled)
        "automatic_tax": {"enabled": bool(current_app.config.get("ENABLE_STRIPE_TAX", True))},

        # Webhook context; the tier is applied when the subscription event arrives
        "metadata": {"user_id": str(user.id), "plan": plan},
        "subscription_data": {
            "metadata": {"user_id": str(user.id), "plan": plan},
        },
    }
    # Param-aware idempotency: new key whenever the Checkout params change
    idem = make_idempotency_key("checkout", "v1", user.id, price_id, _params_hash(params))
    session = client.checkout.sessions.create(params=params, options={"idempotency_key": idem})
    return {"id": session.id, "url": getattr(session, "url", None)}
