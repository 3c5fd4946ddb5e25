from types import SimpleNamespace

import pytest
from feedbackkit.services import billing as billing_service


class _FakeSessions:
    def __init__(self, url="https://stripe.example/checkout/cs_123", error=None):
        self.url = url
        self.error = error
        self.calls = []

    def create(self, params=None, options=None):
        if self.error:
            raise self.error
        self.calls.append((params, options))
        return SimpleNamespace(id="cs_123", url=self.url)


@pytest.fixture()
def stripe_sessions(app, monkeypatch):
    sessions = _FakeSessions()
    # stub the Stripe client to avoid network
    monkeypatch.setattr(billing_service, "_client", lambda: SimpleNamespace(checkout=SimpleNamespace(sessions=sessions)))
    monkeypatch.setitem(app.config, "STRIPE_PRICE_PRO_MONTHLY", "price_pro_monthly")
    monkeypatch.setitem(app.config, "STRIPE_PRICE_TEAM_ANNUAL", "price_team_annual")
    return sessions

@pytest.fixture()
def buyer(app, make_user):
    with app.app_context():
        return make_user("buyer@example.com", tier="free").id


def test_checkout_creates_session(client, login, buyer, stripe_sessions):
    login(client, buyer)
    resp = client.post("/admin/api/billing/checkout", json={"plan": "pro", "interval": "monthly"})
    assert resp.status_code == 200
    assert resp.get_json() == {"id": "cs_123", "url": "https://stripe.example/checkout/cs_123"}

    params, options = stripe_sessions.calls[0]
    assert params["line_items"] == [{"price": "price_pro_monthly", "quantity": 1}]
    assert params["customer_email"] == "buyer@example.com"
    assert params["metadata"] == {"user_id": str(buyer), "plan": "pro"}
    assert params["success_url"].startswith("http://example.test/billing/success")
    assert options["idempotency_key"].startswith("checkout:")

def test_idempotency_key_is_stable_for_same_params(client, login, buyer, stripe_sessions):
    login(client, buyer)
    client.post("/admin/api/billing/checkout", json={"plan": "pro"})
    client.post("/admin/api/billing/checkout", json={"plan": "pro"})
    first, second = (opts["idempotency_key"] for _, opts in stripe_sessions.calls)
    assert first == second

def test_checkout_conflict_when_already_on_tier(app, client, login, make_user, stripe_sessions):
    with app.app_context():
        uid = make_user("team@example.com", tier="team").id
    login(client, uid)
    resp = client.post("/admin/api/billing/checkout", json={"plan": "pro", "interval": "monthly"})
    assert resp.status_code == 409
    assert stripe_sessions.calls == []

@pytest.mark.parametrize("body", [
    {"plan": "enterprise"},
    {"plan": "pro", "interval": "weekly"},
    {"plan": "team", "interval": "monthly"},  # no price configured
])
def test_checkout_validation(client, login, buyer, stripe_sessions, body):
    login(client, buyer)
    resp = client.post("/admin/api/billing/checkout", json=body)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "validation_error"

def test_stripe_failure_is_bad_gateway(client, login, buyer, stripe_sessions):
    stripe_sessions.error = RuntimeError("stripe down")
    login(client, buyer)
    resp = client.post("/admin/api/billing/checkout", json={"plan": "team", "interval": "annual"})
    assert resp.status_code == 502
    assert resp.get_json()["error"] == "bad_gateway"

def test_checkout_requires_login(client, stripe_sessions):
    assert client.post("/admin/api/billing/checkout", json={"plan": "pro"}).status_code == 401

def test_plans_listing(client, login, buyer):
    login(client, buyer)
    body = client.get("/admin/api/billing/plans").get_json()
    assert body["current_tier"] == "free"
    by_tier = {p["tier"]: p for p in body["plans"]}
    assert by_tier["free"]["max_projects"] == 1
    assert by_tier["free"]["max_feedback_per_project"] == 10
    assert by_tier["team"]["can_invite_members"] is True
