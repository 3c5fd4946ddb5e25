import pytest
from feedbackkit import events
from feedbackkit.extensions import db, mail
from feedbackkit.models import EmailLog, OutboxEvent
from feedbackkit.services.access import Actor
from feedbackkit.services.dispatcher import MAX_ATTEMPTS, dispatch_pending
from feedbackkit.services.feedback import delete_feedback, submit_feedback, update_feedback
from feedbackkit.services.projects import set_member_preference


def _pending():
    return db.session.query(OutboxEvent).filter(OutboxEvent.dispatched_at.is_(None)).count()


def test_new_feedback_emails_the_owner(app, make_user, make_project):
    with app.app_context():
        owner = make_user()
        p = make_project(owner, name="Acme")
        submit_feedback(p, Actor.from_api_key(p), title="Export", description="d", user_id="u1")

        with mail.record_messages() as outbox:
            report = dispatch_pending()

        assert (report.dispatched, report.failed, report.emails) == (2, 0, 1)
        assert _pending() == 0
        assert len(outbox) == 1
        assert outbox[0].recipients == ["owner@example.com"]
        assert outbox[0].subject == "[Acme] New feedback: Export"

        log = db.session.query(EmailLog).one()
        assert (log.status, log.template, log.project_id) == ("sent", "new_feedback", p.id)

def test_status_change_reaches_subscribed_voter_with_unsubscribe_link(app, make_user, make_project):
    with app.app_context():
        owner = make_user()
        p = make_project(owner)
        set_member_preference(p, owner, notify_new_feedback=False)
        fid = submit_feedback(p, Actor.from_api_key(p), title="Export", description="d",
                              user_id="u1", user_email="voter@example.com").id
        dispatch_pending()

        update_feedback(p, Actor.from_user(owner, p), fid, status="completed")
        with mail.record_messages() as outbox:
            report = dispatch_pending()

        assert report.emails == 2
        by_to = {m.recipients[0]: m for m in outbox}
        assert set(by_to) == {"owner@example.com", "voter@example.com"}
        assert "unsubscribe?key=" in by_to["voter@example.com"].body
        assert "unsubscribe" not in by_to["owner@example.com"].body
        assert "is now Completed" in by_to["voter@example.com"].subject

def test_failed_delivery_is_retried(app, make_user, make_project, monkeypatch):
    with app.app_context():
        owner = make_user()
        p = make_project(owner)
        submit_feedback(p, Actor.from_api_key(p), title="Export", description="d", user_id="u1")

        def boom(msg):
            raise RuntimeError("smtp down")
        monkeypatch.setattr(mail, "send", boom)

        report = dispatch_pending()
        assert (report.dispatched, report.failed) == (1, 1)
        row = db.session.query(OutboxEvent).filter_by(type=events.FEEDBACK_CREATED).one()
        assert row.dispatched_at is None
        assert row.attempts == 1
        assert "smtp down" in row.last_error
        assert db.session.query(EmailLog).filter_by(status="failed").count() == 1

        monkeypatch.undo()
        report = dispatch_pending()
        assert (report.dispatched, report.failed) == (1, 0)
        row = db.session.query(OutboxEvent).filter_by(type=events.FEEDBACK_CREATED).one()
        assert row.dispatched_at is not None
        assert row.attempts == 2
        assert row.last_error is None

def test_exhausted_events_are_skipped(app, make_user, make_project):
    with app.app_context():
        p = make_project(make_user())
        events.emit(events.VOTE_CAST, project_id=p.id, feedback_id=1, user_id="u1")
        db.session.commit()
        row = db.session.query(OutboxEvent).one()
        row.attempts = MAX_ATTEMPTS
        db.session.commit()

        report = dispatch_pending()
        assert (report.dispatched, report.failed) == (0, 0)

def test_event_for_deleted_feedback_is_marked_dispatched(app, make_user, make_project):
    with app.app_context():
        owner = make_user()
        p = make_project(owner)
        fid = submit_feedback(p, Actor.from_api_key(p), title="Export", description="d", user_id="u1").id
        delete_feedback(p, Actor.from_user(owner, p), fid)

        with mail.record_messages() as outbox:
            report = dispatch_pending()
        assert report.dispatched == 2 and report.emails == 0
        assert outbox == []

def test_suppressed_address_is_skipped(app, make_user, make_project):
    with app.app_context():
        owner = make_user()
        p = make_project(owner)
        db.session.add(EmailLog(to_email="owner@example.com", template="new_feedback",
                                subject="x", status="bounced", meta={}))
        db.session.commit()
        submit_feedback(p, Actor.from_api_key(p), title="Export", description="d", user_id="u1")

        with mail.record_messages() as outbox:
            report = dispatch_pending()
        assert report.failed == 0
        assert outbox == []
        skipped = db.session.query(EmailLog).filter_by(status="failed").one()
        assert skipped.meta == {"reason": "suppressed"}


@pytest.mark.parametrize("limit", [1])
def test_limit_caps_batch(app, make_user, make_project, limit):
    with app.app_context():
        p = make_project(make_user())
        submit_feedback(p, Actor.from_api_key(p), title="Export", description="d", user_id="u1")
        report = dispatch_pending(limit=limit)
        assert report.dispatched == 1
        assert _pending() == 1

def test_claim_skips_rows_locked_by_another_worker(app):
    from sqlalchemy.dialects import postgresql
    from feedbackkit.services.dispatcher import claim_query

    with app.app_context():
        sql = str(claim_query(1).statement.compile(dialect=postgresql.dialect()))
    assert "FOR UPDATE SKIP LOCKED" in sql
    assert "dispatched_at IS NULL" in sql

def test_stale_batch_does_not_resend(app, make_user, make_project, monkeypatch):
    from feedbackkit.services import dispatcher

    with app.app_context():
        p = make_project(make_user())
        submit_feedback(p, Actor.from_api_key(p), title="Export", description="d", user_id="u1")
        ids = [i for (i,) in db.session.query(OutboxEvent.id).order_by(OutboxEvent.id)]
        with mail.record_messages() as outbox:
            dispatch_pending()
        assert len(outbox) == 1

        # A second worker that listed the same ids before the first one finished
        monkeypatch.setattr(dispatcher, "_pending_ids", lambda limit: ids)
        with mail.record_messages() as outbox:
            report = dispatch_pending()
        assert (report.dispatched, report.failed, report.emails) == (0, 0, 0)
        assert outbox == []
        assert {r.attempts for r in db.session.query(OutboxEvent)} == {1}
