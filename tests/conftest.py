import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import pytest
from feedbackkit import create_app
from feedbackkit.extensions import db
from feedbackkit.models import Project, ProjectMember, User
from feedbackkit.services import access

@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(
        TESTING=True,
        MAIL_SUPPRESS_SEND=True,
        APP_BASE_URL="http://example.test",
        WTF_CSRF_ENABLED=False,
        EVENTS_DISPATCH_INLINE=False,
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()


# ---- factories (call inside app.app_context()) ----

@pytest.fixture()
def make_user():
    def _make(email="owner@example.com", tier="free", password="pw", **kw):
        u = User(email=email, subscription_tier=tier, is_active=True, **kw)
        u.set_password(password)
        db.session.add(u)
        db.session.commit()
        return u
    return _make

@pytest.fixture()
def make_project():
    def _make(owner, name="App", **kw):
        p = Project(name=name, owner_id=owner.id, **kw)
        db.session.add(p)
        db.session.commit()
        return p
    return _make

@pytest.fixture()
def add_member():
    def _add(project, user, role="member"):
        m = ProjectMember(project_id=project.id, user_id=user.id, role=role)
        db.session.add(m)
        db.session.commit()
        return m
    return _add

@pytest.fixture()
def sdk_actor():
    return access.Actor.from_api_key

@pytest.fixture()
def login():
    def _login(client, user_id: int):
        # Simulate Flask-Login session
        with client.session_transaction() as sess:
            sess["_user_id"] = str(user_id)
    return _login
