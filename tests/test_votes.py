import pytest
from feedbackkit.errors import Conflict, Forbidden, ValidationError
from feedbackkit.extensions import db
from feedbackkit.models import Feedback, Vote
from feedbackkit.services.access import Actor
from feedbackkit.services.feedback import submit_feedback, update_feedback
from feedbackkit.services.merge import merge_feedback
from feedbackkit.services.sdk_users import register_sdk_user
from feedbackkit.services.votes import cast_vote, remove_vote, unsubscribe

def _rows(fid):
    return db.session.query(Vote).filter_by(feedback_id=fid).count()

def _count(fid):
    return db.session.get(Feedback, fid).vote_count

def _setup(make_user, make_project, tier="pro"):
    owner = make_user(tier=tier)
    p = make_project(owner)
    key = Actor.from_api_key(p)
    fb = submit_feedback(p, key, title="Dark mode", description="please", user_id="creator")
    return owner, p, key, fb.id


def test_vote_count_tracks_rows_through_vote_and_unvote(app, make_user, make_project):
    with app.app_context():
        _, p, key, fid = _setup(make_user, make_project)
        assert _count(fid) == _rows(fid) == 1

        res = cast_vote(p, key, fid, "u2")
        assert (res.vote_count, res.has_voted) == (2, True)
        cast_vote(p, key, fid, "u3")
        assert _count(fid) == _rows(fid) == 3

        res = remove_vote(p, key, fid, "u2")
        assert (res.vote_count, res.has_voted) == (2, False)
        assert _count(fid) == _rows(fid) == 2

def test_double_vote_is_conflict_and_count_unchanged(app, make_user, make_project):
    with app.app_context():
        _, p, key, fid = _setup(make_user, make_project)
        cast_vote(p, key, fid, "u2")
        with pytest.raises(Conflict):
            cast_vote(p, key, fid, "u2")
        assert _count(fid) == _rows(fid) == 2

def test_creator_cannot_vote_twice(app, make_user, make_project):
    with app.app_context():
        _, p, key, fid = _setup(make_user, make_project)
        with pytest.raises(Conflict):
            cast_vote(p, key, fid, "creator")
        assert _count(fid) == 1

def test_unvote_is_idempotent(app, make_user, make_project):
    with app.app_context():
        _, p, key, fid = _setup(make_user, make_project)
        first = remove_vote(p, key, fid, "nobody")
        second = remove_vote(p, key, fid, "nobody")
        assert first.vote_count == second.vote_count == 1
        assert _count(fid) == _rows(fid) == 1

def test_notify_requires_email_and_issues_permission_key(app, make_user, make_project):
    with app.app_context():
        _, p, key, fid = _setup(make_user, make_project)
        with pytest.raises(ValidationError):
            cast_vote(p, key, fid, "u2", notify_status_change=True)
        assert _count(fid) == 1

        cast_vote(p, key, fid, "u2", email="U2@Example.com", notify_status_change=True)
        v = db.session.query(Vote).filter_by(feedback_id=fid, user_id="u2").one()
        assert v.email == "u2@example.com"
        assert v.notify_status_change is True
        assert v.permission_key and len(v.permission_key) >= 32

        cast_vote(p, key, fid, "u3", email="u3@example.com")
        v3 = db.session.query(Vote).filter_by(feedback_id=fid, user_id="u3").one()
        assert v3.permission_key is None

def test_unsubscribe_is_idempotent_and_never_errors(app, make_user, make_project):
    with app.app_context():
        _, p, key, fid = _setup(make_user, make_project)
        cast_vote(p, key, fid, "u2", email="u2@example.com", notify_status_change=True)
        pk = db.session.query(Vote).filter_by(user_id="u2").one().permission_key

        assert unsubscribe(pk) is True
        v = db.session.query(Vote).filter_by(user_id="u2").one()
        assert v.notify_status_change is False
        assert v.permission_key is None

        assert unsubscribe(pk) is True
        assert unsubscribe("does-not-exist") is True
        assert unsubscribe("") is True
        assert unsubscribe(None) is True

def test_voting_closed_on_completed_feedback(app, make_user, make_project):
    with app.app_context():
        owner, p, key, fid = _setup(make_user, make_project)
        cast_vote(p, key, fid, "u2")
        update_feedback(p, Actor.from_user(owner, p), fid, status="completed")

        with pytest.raises(Forbidden):
            cast_vote(p, key, fid, "u3")
        # withdrawing is still possible
        assert remove_vote(p, key, fid, "u2").vote_count == 1

def test_vote_on_merged_feedback_is_conflict(app, make_user, make_project):
    with app.app_context():
        owner, p, key, fid = _setup(make_user, make_project)
        other = submit_feedback(p, key, title="Night theme", description="dup", user_id="x").id
        merge_feedback(p, Actor.from_user(owner, p), fid, [other])

        with pytest.raises(Conflict) as exc:
            cast_vote(p, key, other, "u9")
        assert exc.value.extra["merged_into_id"] == fid

def test_archived_project_blocks_vote_but_allows_unvote(app, make_user, make_project):
    with app.app_context():
        _, p, key, fid = _setup(make_user, make_project)
        cast_vote(p, key, fid, "u2")
        p.is_archived = True
        db.session.commit()

        with pytest.raises(Forbidden):
            cast_vote(p, key, fid, "u3")
        assert remove_vote(p, key, fid, "u2").vote_count == 1

def test_total_mrr_sums_registered_voters(app, make_user, make_project):
    with app.app_context():
        _, p, key, fid = _setup(make_user, make_project)
        register_sdk_user(p, key, "u2", 10)
        register_sdk_user(p, key, "u3", 5.5)
        assert db.session.get(Feedback, fid).total_mrr is None

        cast_vote(p, key, fid, "u2")
        cast_vote(p, key, fid, "u3")
        assert db.session.get(Feedback, fid).total_mrr == pytest.approx(15.5)

        remove_vote(p, key, fid, "u3")
        assert db.session.get(Feedback, fid).total_mrr == pytest.approx(10)

def test_register_race_keeps_enclosing_work(app, make_user, make_project, monkeypatch):
    from feedbackkit.models import SdkUser
    from feedbackkit.services import sdk_users
    from feedbackkit.services.transactions import transactional

    with app.app_context():
        _, p, key, _ = _setup(make_user, make_project)
        db.session.add(SdkUser(project_id=p.id, user_id="u1", mrr=1))
        db.session.commit()

        # First lookup misses as if another request inserted u1 in between
        real_find = sdk_users._find
        calls = []

        def stale_find(pid, uid):
            calls.append(uid)
            return None if len(calls) == 1 else real_find(pid, uid)

        monkeypatch.setattr(sdk_users, "_find", stale_find)

        @transactional
        def register_two():
            db.session.add(SdkUser(project_id=p.id, user_id="other", mrr=3))
            db.session.flush()
            return register_sdk_user(p, key, "u1", 42)

        row = register_two()
        assert row.user_id == "u1"

        db.session.expire_all()
        by_user = {r.user_id: float(r.mrr) for r in db.session.query(SdkUser).filter_by(project_id=p.id)}
        assert by_user == {"u1": 42.0, "other": 3.0}
