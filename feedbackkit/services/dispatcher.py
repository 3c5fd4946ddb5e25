"""
Outbox dispatcher.

Drains OutboxEvent rows oldest first, one commit per event. Each row is
claimed with FOR UPDATE SKIP LOCKED so concurrent dispatchers never send the
same event twice while it is in flight. Notification events fan out to
email; the rest are only logged. A failed event keeps dispatched_at NULL and
is retried on the next run, so delivery is at least once.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from feedbackkit import events
from feedbackkit.events import LifecycleEvent
from feedbackkit.extensions import db
from feedbackkit.models.outbox_event import OutboxEvent
from feedbackkit.observability import log_event
from feedbackkit.services import email, notifications
from feedbackkit.services.transactions import lock_row

# Events that can produce recipients
NOTIFY_EVENTS = (events.FEEDBACK_STATUS_CHANGED, events.FEEDBACK_CREATED)

MAX_ATTEMPTS = 10


@dataclass
class DispatchReport:
    dispatched: int = 0
    failed: int = 0
    emails: int = 0


def _handle(event: LifecycleEvent) -> int:
    """Deliver one event; returns the number of emails sent."""
    if event.type == events.PROJECT_INVITE_CREATED:
        return email.deliver_invite(event)
    if event.type == events.PROJECT_OWNERSHIP_TRANSFERRED:
        return email.deliver_ownership_notice(event)
    if event.type not in NOTIFY_EVENTS:
        return 0
    ctx = notifications.load_context(event)
    if ctx is None:
        return 0
    recipients = notifications.decide(event, project=ctx.project, members=ctx.members, voters=ctx.voters)
    for r in recipients:
        email.deliver(r, ctx, event)
    return len(recipients)


def _pending_ids(limit: int) -> list:
    return [
        row_id for (row_id,) in db.session.query(OutboxEvent.id)
        .filter(OutboxEvent.dispatched_at.is_(None), OutboxEvent.attempts < MAX_ATTEMPTS)
        .order_by(OutboxEvent.id)
        .limit(limit)
        .all()
    ]


def claim_query(event_id: int):
    """Row lock held until this event's commit; a row another worker holds is skipped, not waited on."""
    return lock_row(
        db.session.query(OutboxEvent)
        .filter(OutboxEvent.id == event_id, OutboxEvent.dispatched_at.is_(None))
        .populate_existing(),
        skip_locked=True,
    )


def dispatch_pending(limit: int = None) -> DispatchReport:
    limit = limit or current_app.config.get("EVENTS_DISPATCH_BATCH", 50)
    report = DispatchReport()
    for event_id in _pending_ids(limit):
        row = claim_query(event_id).one_or_none()
        if row is None:
            db.session.rollback()
            continue
        event = LifecycleEvent.from_row(row)
        try:
            sent = _handle(event)
        except Exception as exc:
            if isinstance(exc, SQLAlchemyError):
                db.session.rollback()
                row = claim_query(event_id).one_or_none()
            # Otherwise the claim still holds and the EmailLog rows of this attempt are kept
            if row is not None:
                row.attempts = (row.attempts or 0) + 1
                row.last_error = f"{type(exc).__name__}: {exc}"[:500]
            db.session.commit()
            report.failed += 1
            current_app.logger.exception("outbox event %s (%s) failed", event_id, event.type)
            continue

        row.attempts = (row.attempts or 0) + 1
        row.dispatched_at = datetime.now(timezone.utc)
        row.last_error = None
        db.session.commit()
        report.dispatched += 1
        report.emails += sent
        log_event("outbox_dispatched", event_id=event_id, type=event.type,
                  project_id=event.project_id, feedback_id=event.feedback_id, recipients=sent)

    if report.failed:
        log_event("outbox_batch", level=logging.WARNING, dispatched=report.dispatched, failed=report.failed)
    return report


def dispatch_after_commit() -> None:
    """Drain the outbox in-request when EVENTS_DISPATCH_INLINE is on. The write already committed."""
    if not current_app.config.get("EVENTS_DISPATCH_INLINE"):
        return
    try:
        dispatch_pending()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("inline outbox dispatch failed; events stay queued for the CLI")
