from datetime import datetime, timedelta, timezone

import pytest
from feedbackkit.extensions import db, mail
from feedbackkit.models import Project, ProjectInvite, ProjectMember
from feedbackkit.models.project_invite import INVITE_CODE_ALPHABET
from feedbackkit.services.dispatcher import dispatch_pending


@pytest.fixture()
def crew(app, make_user, make_project):
    with app.app_context():
        owner = make_user("owner@example.com", tier="team", name="Olive")
        p = make_project(owner, name="Acme")
        return dict(owner=owner.id, project=p.id)

def _url(crew, suffix=""):
    return f"/admin/api/projects/{crew['project']}/invites{suffix}"

def _invite(client, crew, email="new@example.com", role="member"):
    return client.post(_url(crew), json={"email": email, "role": role})


def test_invite_is_emailed_with_code(app, client, login, crew):
    login(client, crew["owner"])
    r = _invite(client, crew, email="New@Example.com", role="viewer")
    assert r.status_code == 201
    body = r.get_json()
    assert body["email"] == "new@example.com" and body["role"] == "viewer"
    assert len(body["code"]) == 8 and set(body["code"]) <= set(INVITE_CODE_ALPHABET)

    with app.app_context():
        with mail.record_messages() as outbox:
            report = dispatch_pending()
    assert report.emails == 1
    assert outbox[0].recipients == ["new@example.com"]
    assert outbox[0].subject == "Olive invited you to Acme"
    assert body["code"] in outbox[0].body

def test_reinvite_refreshes_code(app, client, login, crew):
    login(client, crew["owner"])
    first = _invite(client, crew).get_json()
    second = _invite(client, crew, role="admin").get_json()
    assert first["id"] == second["id"]
    assert second["role"] == "admin"
    with app.app_context():
        assert db.session.query(ProjectInvite).count() == 1

def test_accept_creates_membership(app, client, login, make_user, crew):
    login(client, crew["owner"])
    code = _invite(client, crew, role="admin").get_json()["code"]
    with app.app_context():
        uid = make_user("new@example.com").id

    login(client, uid)
    preview = client.get(f"/admin/api/invites/{code.lower()}").get_json()
    assert preview["project_name"] == "Acme"
    assert preview["invited_by_name"] == "Olive"
    assert preview["email_matches"] is True

    r = client.post("/admin/api/invites/accept", json={"code": code})
    assert r.status_code == 200
    assert r.get_json()["role"] == "admin"
    assert client.post("/admin/api/invites/accept", json={"code": code}).status_code == 409
    with app.app_context():
        m = db.session.query(ProjectMember).filter_by(project_id=crew["project"], user_id=uid).one()
        assert m.role == "admin"

def test_accept_needs_matching_email(app, client, login, make_user, crew):
    login(client, crew["owner"])
    code = _invite(client, crew).get_json()["code"]
    with app.app_context():
        other = make_user("other@example.com").id
    login(client, other)
    assert client.get(f"/admin/api/invites/{code}").get_json()["email_matches"] is False
    assert client.post("/admin/api/invites/accept", json={"code": code}).status_code == 403

def test_expired_and_unknown_codes(app, client, login, make_user, crew):
    login(client, crew["owner"])
    code = _invite(client, crew).get_json()["code"]
    with app.app_context():
        inv = db.session.query(ProjectInvite).one()
        inv.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        db.session.commit()
        uid = make_user("new@example.com").id
    login(client, uid)
    assert client.post("/admin/api/invites/accept", json={"code": code}).status_code == 409
    assert client.post("/admin/api/invites/accept", json={"code": "ZZZZZZZZ"}).status_code == 404
    assert client.post("/admin/api/invites/accept", json={}).status_code == 400

def test_invites_need_team_tier_and_privileged_role(app, client, login, make_user, make_project, add_member, crew):
    with app.app_context():
        pro = make_user("pro@example.com", tier="pro")
        pid = make_project(pro).id
        pro_id = pro.id
        member = make_user("member@example.com")
        add_member(db.session.get(Project, crew["project"]), member, "member")
        member_id = member.id
    login(client, pro_id)
    r = client.post(f"/admin/api/projects/{pid}/invites", json={"email": "x@example.com"})
    assert r.status_code == 402

    login(client, member_id)
    assert _invite(client, crew).status_code == 403
    assert client.get(_url(crew)).status_code == 403

def test_existing_member_cannot_be_invited(app, client, login, make_user, add_member, crew):
    with app.app_context():
        add_member(db.session.get(Project, crew["project"]), make_user("member@example.com"), "member")
    login(client, crew["owner"])
    assert _invite(client, crew, email="member@example.com").status_code == 409
    assert _invite(client, crew, email="owner@example.com").status_code == 409

def test_list_and_revoke(app, client, login, crew):
    login(client, crew["owner"])
    inv = _invite(client, crew).get_json()
    assert [i["id"] for i in client.get(_url(crew)).get_json()] == [inv["id"]]
    assert client.delete(_url(crew, f"/{inv['id']}")).status_code == 204
    assert client.get(_url(crew)).get_json() == []
    assert client.delete(_url(crew, f"/{inv['id']}")).status_code == 404

def test_revoked_invite_sends_nothing(app, client, login, crew):
    login(client, crew["owner"])
    inv = _invite(client, crew).get_json()
    client.delete(_url(crew, f"/{inv['id']}"))
    with app.app_context():
        with mail.record_messages() as outbox:
            report = dispatch_pending()
    assert report.emails == 0 and outbox == []
