from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from feedbackkit.billing.plans import PLANS
from feedbackkit.errors import ServiceError
from feedbackkit.extensions import limiter
from feedbackkit.services import billing as billing_service
from feedbackkit.utils.validators import json_object
from . import bp


@bp.get("/plans")
@login_required
def plans():
    return jsonify({
        "current_tier": current_user.subscription_tier,
        "plans": [
            {
                "tier": p.tier,
                "max_projects": p.max_projects,
                "max_feedback_per_project": p.max_feedback_per_project,
                "can_invite_members": p.can_invite_members,
                "has_integrations": p.has_integrations,
                "has_configurable_statuses": p.has_configurable_statuses,
            }
            for p in PLANS.values()
        ],
    }), 200


@bp.post("/checkout")
@limiter.limit("10/minute")
@login_required
def checkout():
    data = json_object(request.get_json(silent=True))
    plan = str(data.get("plan") or "").strip().lower()
    interval = str(data.get("interval") or "monthly").strip().lower()

    try:
        payload = billing_service.create_checkout_session(plan=plan, interval=interval, user=current_user)
    except ServiceError:
        raise
    except Exception:
        current_app.logger.exception(
            "billing.checkout.session_create_failed",
            extra={"user_id": current_user.id, "plan": plan, "interval": interval},
        )
        return jsonify({"error": "bad_gateway", "code": 502, "reason": "Could not create checkout session"}), 502

    if not payload.get("url"):
        return jsonify({"error": "bad_gateway", "code": 502, "reason": "Could not create checkout session"}), 502
    return jsonify(payload), 200
