import pytest
from feedbackkit.extensions import db
from feedbackkit.models import Feedback, Vote
from feedbackkit.services.access import Actor
from feedbackkit.services.merge import merge_feedback


@pytest.fixture()
def project_key(app, make_user, make_project):
    with app.app_context():
        owner = make_user(tier="pro")
        p = make_project(owner)
        return dict(api_key=p.api_key, project_id=p.id, owner_id=owner.id)

def _h(project_key):
    return {"X-API-Key": project_key["api_key"]}

def _submit(client, project_key, **body):
    payload = dict(title="Dark mode", description="Please", userId="u1")
    payload.update(body)
    return client.post("/api/v1/feedbacks", json=payload, headers=_h(project_key))


def test_missing_or_bad_api_key_is_401(client):
    r = client.get("/api/v1/feedbacks")
    assert r.status_code == 401
    assert r.get_json()["error"] == "unauthorized"

    r = client.get("/api/v1/feedbacks", headers={"X-API-Key": "nope"})
    assert r.status_code == 401

def test_submit_and_list(client, project_key):
    r = _submit(client, project_key, userEmail="u1@example.com", category="bug_report")
    assert r.status_code == 201
    body = r.get_json()
    assert body["status"] == "pending"
    assert body["vote_count"] == 1
    assert body["has_voted"] is True
    assert body["category"] == "bug_report"

    r = client.get("/api/v1/feedbacks?userId=u2", headers=_h(project_key))
    assert r.status_code == 200
    items = r.get_json()
    assert len(items) == 1 and items[0]["has_voted"] is False

def test_submit_validation_error_names_field(client, project_key):
    r = _submit(client, project_key, title="")
    assert r.status_code == 400
    body = r.get_json()
    assert body["error"] == "validation_error"
    assert body["field"] == "title"

def test_vote_unvote_round(client, project_key):
    fid = _submit(client, project_key).get_json()["id"]

    r = client.post(f"/api/v1/feedbacks/{fid}/votes", json={"userId": "u2"}, headers=_h(project_key))
    assert r.status_code == 200
    assert r.get_json() == {"feedback_id": fid, "vote_count": 2, "has_voted": True}

    r = client.post(f"/api/v1/feedbacks/{fid}/votes", json={"user_id": "u2"}, headers=_h(project_key))
    assert r.status_code == 409

    r = client.delete(f"/api/v1/feedbacks/{fid}/votes", json={"userId": "u2"}, headers=_h(project_key))
    assert r.status_code == 200
    assert r.get_json()["vote_count"] == 1

    r = client.delete(f"/api/v1/feedbacks/{fid}/votes?userId=u2", headers=_h(project_key))
    assert r.status_code == 200
    assert r.get_json()["vote_count"] == 1

def test_vote_with_notification_needs_email(client, project_key):
    fid = _submit(client, project_key).get_json()["id"]
    r = client.post(f"/api/v1/feedbacks/{fid}/votes",
                    json={"userId": "u2", "notifyStatusChange": True}, headers=_h(project_key))
    assert r.status_code == 400

    r = client.post(f"/api/v1/feedbacks/{fid}/votes",
                    json={"userId": "u2", "notifyStatusChange": True, "email": "u2@example.com"},
                    headers=_h(project_key))
    assert r.status_code == 200

def test_vote_on_merged_item_reports_survivor(app, client, project_key):
    a = _submit(client, project_key).get_json()["id"]
    b = _submit(client, project_key, title="Night", userId="u9").get_json()["id"]
    with app.app_context():
        from feedbackkit.models import Project, User
        p = db.session.get(Project, project_key["project_id"])
        owner = db.session.get(User, project_key["owner_id"])
        merge_feedback(p, Actor.from_user(owner, p), a, [b])

    r = client.post(f"/api/v1/feedbacks/{b}/votes", json={"userId": "u3"}, headers=_h(project_key))
    assert r.status_code == 409
    assert r.get_json()["merged_into_id"] == a

    items = client.get("/api/v1/feedbacks", headers=_h(project_key)).get_json()
    assert [i["id"] for i in items] == [a]
    items = client.get("/api/v1/feedbacks?includeMerged=true", headers=_h(project_key)).get_json()
    assert {i["id"] for i in items} == {a, b}

def test_feedback_of_other_project_is_404(app, client, project_key, make_project):
    fid = _submit(client, project_key).get_json()["id"]
    with app.app_context():
        from feedbackkit.models import User
        other = make_project(db.session.get(User, project_key["owner_id"]), name="Other")
        other_key = other.api_key
    r = client.get(f"/api/v1/feedbacks/{fid}", headers={"X-API-Key": other_key})
    assert r.status_code == 404

def test_comments(client, project_key):
    fid = _submit(client, project_key).get_json()["id"]
    r = client.post(f"/api/v1/feedbacks/{fid}/comments",
                    json={"content": "Same here", "userId": "u2"}, headers=_h(project_key))
    assert r.status_code == 201
    assert r.get_json()["is_admin"] is False

    r = client.post(f"/api/v1/feedbacks/{fid}/comments", json={"content": "anon"}, headers=_h(project_key))
    assert r.status_code == 400

    r = client.get(f"/api/v1/feedbacks/{fid}/comments", headers=_h(project_key))
    assert [c["content"] for c in r.get_json()] == ["Same here"]

    r = client.get(f"/api/v1/feedbacks/{fid}", headers=_h(project_key))
    assert r.get_json()["comment_count"] == 1

def test_register_user_updates_mrr(app, client, project_key):
    r = client.post("/api/v1/users/register", json={"userId": "u1", "mrr": "12.5"}, headers=_h(project_key))
    assert r.status_code == 200
    assert r.get_json()["mrr"] == pytest.approx(12.5)

    r = client.post("/api/v1/users/register", json={"userId": "u1"}, headers=_h(project_key))
    assert r.get_json()["mrr"] == pytest.approx(12.5)

    fid = _submit(client, project_key).get_json()["id"]
    with app.app_context():
        assert db.session.get(Feedback, fid).total_mrr == pytest.approx(12.5)

def test_quota_exhaustion_is_402(app, client, make_user, make_project):
    with app.app_context():
        p = make_project(make_user("free@example.com", tier="free"))
        key = p.api_key
    for i in range(10):
        r = client.post("/api/v1/feedbacks", json={"title": f"t{i}", "description": "d", "userId": f"u{i}"},
                        headers={"X-API-Key": key})
        assert r.status_code == 201
    r = client.post("/api/v1/feedbacks", json={"title": "t", "description": "d", "userId": "u"},
                    headers={"X-API-Key": key})
    assert r.status_code == 402
    body = r.get_json()
    assert body["error"] == "payment_required"
    assert (body["limit"], body["current"], body["required_tier"]) == (10, 10, "pro")

def test_archived_project_is_read_only(app, client, project_key):
    fid = _submit(client, project_key).get_json()["id"]
    client.post(f"/api/v1/feedbacks/{fid}/votes", json={"userId": "u2"}, headers=_h(project_key))
    with app.app_context():
        from feedbackkit.models import Project
        db.session.get(Project, project_key["project_id"]).is_archived = True
        db.session.commit()

    assert client.get("/api/v1/feedbacks", headers=_h(project_key)).status_code == 200
    assert _submit(client, project_key).status_code == 403
    r = client.post(f"/api/v1/feedbacks/{fid}/votes", json={"userId": "u3"}, headers=_h(project_key))
    assert r.status_code == 403
    r = client.delete(f"/api/v1/feedbacks/{fid}/votes", json={"userId": "u2"}, headers=_h(project_key))
    assert r.status_code == 200

def test_unsubscribe_link_always_ok(app, client, project_key):
    fid = _submit(client, project_key, userEmail="u1@example.com").get_json()["id"]
    with app.app_context():
        key = db.session.query(Vote).filter_by(feedback_id=fid).one().permission_key
    assert key

    assert client.get(f"/unsubscribe?key={key}").get_json() == {"ok": True}
    assert client.get(f"/unsubscribe?key={key}").get_json() == {"ok": True}
    assert client.post("/unsubscribe", json={"key": "bogus"}).get_json() == {"ok": True}
    with app.app_context():
        assert db.session.query(Vote).filter_by(feedback_id=fid).one().notify_status_change is False

@pytest.mark.parametrize("mrr", ["nan", "inf", "-inf", "Infinity"])
def test_register_user_rejects_non_finite_mrr(app, client, project_key, mrr):
    r = client.post("/api/v1/users/register", json={"userId": "u1", "mrr": mrr}, headers=_h(project_key))
    assert r.status_code == 400
    assert r.get_json()["field"] == "mrr"
    with app.app_context():
        from feedbackkit.models import SdkUser
        assert db.session.query(SdkUser).count() == 0

@pytest.mark.parametrize("body", [["x"], "x", 7])
def test_non_object_body_is_400(client, project_key, body):
    r = client.post("/api/v1/feedbacks", json=body, headers=_h(project_key))
    assert r.status_code == 400
    assert r.get_json()["reason"] == "Request body must be a JSON object"
    assert client.post("/api/v1/users/register", json=body, headers=_h(project_key)).status_code == 400
    assert client.post("/unsubscribe", json=body).status_code == 400
