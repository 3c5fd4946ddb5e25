import json
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode, urljoin

from flask import current_app, render_template
from flask_mail import Message

from feedbackkit.events import LifecycleEvent
from feedbackkit.extensions import db, mail
from feedbackkit.models.email_log import EmailLog
from feedbackkit.models.project import Project
from feedbackkit.models.project_invite import ProjectInvite
from feedbackkit.models.user import User
from feedbackkit.services.notifications import (
    KIND_VOTER,
    NotificationContext,
    Recipient,
    TEMPLATE_NEW_FEEDBACK,
    TEMPLATE_STATUS_CHANGE,
)

# Suppression lookback window
SUPPRESSION_WINDOW_DAYS = 90

STATUS_LABELS = {
    "pending": "Pending",
    "approved": "Approved",
    "in_progress": "In Progress",
    "testflight": "TestFlight",
    "completed": "Completed",
    "rejected": "Rejected",
}


def is_suppressed(to_email: str) -> bool:
    """
    Return True if the address should be suppressed due to a recent bounce/complaint.
    """
    cutoff = datetime.now(timezone.utc) - timedelta(days=SUPPRESSION_WINDOW_DAYS)
    q = EmailLog.query.filter(
        EmailLog.to_email == to_email.lower(),
        EmailLog.created_at >= cutoff,
        EmailLog.status.in_(("bounced", "complaint")),
    )
    return db.session.query(q.exists()).scalar()


def absolute_url(path: str) -> str:
    base = current_app.config["APP_BASE_URL"].rstrip("/") + "/"
    path = path.lstrip("/")
    return urljoin(base, path)


def unsubscribe_url(permission_key: str) -> str:
    return absolute_url("unsubscribe?" + urlencode({"key": permission_key}))


def send_email(to_email: str, subject: str, template: str, context: Optional[Dict[str, Any]] = None,
               project_id: Optional[int] = None) -> Optional[str]:
    """
    template: basename under templates/email/ without extension (e.g., 'status_change').
    Renders both HTML and plaintext. Every attempt leaves an EmailLog row.

    Suppressed addresses are skipped (returns None). Transport errors are
    logged and re-raised so the caller can retry. Log rows are flushed only;
    the caller commits them together with its own bookkeeping.
    """
    context = context or {}
    to_email = to_email.lower()

    if is_suppressed(to_email):
        db.session.add(EmailLog(
            project_id=project_id,
            to_email=to_email,
            template=template,
            subject=subject,
            status="failed",
            meta={"reason": "suppressed"},
        ))
        db.session.flush()
        current_app.logger.info(json.dumps({
            "event": "mail_send", "template": template, "to": to_email, "outcome": "suppressed",
        }))
        return None

    msg = Message(recipients=[to_email], subject=subject)
    msg.body = render_template(f"email/{template}.txt", **context)
    msg.html = render_template(f"email/{template}.html", **context)

    elog = EmailLog(
        project_id=project_id,
        to_email=to_email,
        template=template,
        subject=subject,
        status="queued",
        meta={},
    )
    db.session.add(elog)
    db.session.flush()

    start = time.perf_counter()
    try:
        mail.send(msg)  # Flask-Mail returns None; provider capture varies by backend
    except Exception as ex:
        latency_ms = int((time.perf_counter() - start) * 1000)
        elog.status = "failed"
        elog.meta = {"error": str(ex)[:500]}
        db.session.flush()
        current_app.logger.warning(json.dumps({
            "event": "mail_send",
            "template": template,
            "to": to_email,
            "subject": subject,
            "outcome": "smtp_error",
            "latency_ms": latency_ms,
            "smtp_error": str(ex),
        }))
        raise

    latency_ms = int((time.perf_counter() - start) * 1000)
    elog.status = "sent"
    db.session.flush()
    current_app.logger.info(json.dumps({
        "event": "mail_send",
        "template": template,
        "to": to_email,
        "subject": subject,
        "outcome": "sent",
        "latency_ms": latency_ms,
    }))
    return elog.provider_msg_id


def _subject(recipient: Recipient, ctx: NotificationContext, new_status: str) -> str:
    if recipient.template == TEMPLATE_NEW_FEEDBACK:
        return f"[{ctx.project.name}] New feedback: {ctx.feedback.title}"[:200]
    label = STATUS_LABELS.get(new_status, new_status)
    return f"[{ctx.project.name}] \"{ctx.feedback.title}\" is now {label}"[:200]


def deliver(recipient: Recipient, ctx: NotificationContext, event: LifecycleEvent) -> Optional[str]:
    """Render and send one notification produced by notifications.decide()."""
    new_status = event.new_status or ctx.feedback.status
    old_status = event.old_status
    context = {
        "product_name": current_app.config.get("PRODUCT_NAME", "FeedbackKit"),
        "project_name": ctx.project.name,
        "feedback_title": ctx.feedback.title,
        "new_status": STATUS_LABELS.get(new_status, new_status),
        "old_status": STATUS_LABELS.get(old_status, old_status) if old_status else None,
        "rejection_reason": ctx.feedback.rejection_reason,
        "is_voter": recipient.kind == KIND_VOTER,
        "unsubscribe_url": unsubscribe_url(recipient.permission_key) if recipient.permission_key else None,
    }
    if recipient.template not in (TEMPLATE_STATUS_CHANGE, TEMPLATE_NEW_FEEDBACK):
        raise ValueError(f"Unknown email template {recipient.template!r}")
    return send_email(
        to_email=recipient.email,
        subject=_subject(recipient, ctx, new_status),
        template=recipient.template,
        context=context,
        project_id=ctx.project.id,
    )


def _display_name(user: Optional[User]) -> str:
    if user is None:
        return "A teammate"
    return user.name or user.email


def deliver_invite(event: LifecycleEvent) -> int:
    """Send the invite code; nothing is sent once the invite is gone, used or expired."""
    invite = db.session.get(ProjectInvite, event.payload.get("invite_id"))
    if invite is None or invite.is_accepted or invite.is_expired:
        return 0
    inviter = _display_name(invite.invited_by)
    send_email(
        to_email=invite.email,
        subject=f"{inviter} invited you to {invite.project.name}"[:200],
        template="project_invite",
        context={
            "product_name": current_app.config.get("PRODUCT_NAME", "FeedbackKit"),
            "project_name": invite.project.name,
            "inviter_name": inviter,
            "role": invite.role,
            "invite_code": invite.code,
            "expires_on": invite.expires_at.strftime("%Y-%m-%d"),
        },
        project_id=invite.project_id,
    )
    return 1


def deliver_ownership_notice(event: LifecycleEvent) -> int:
    project = db.session.get(Project, event.project_id)
    new_owner = db.session.get(User, event.payload.get("new_owner_id"))
    if project is None or new_owner is None or project.owner_id != new_owner.id:
        return 0
    previous = db.session.get(User, event.payload.get("previous_owner_id"))
    send_email(
        to_email=new_owner.email,
        subject=f"You now own {project.name}"[:200],
        template="ownership_transferred",
        context={
            "product_name": current_app.config.get("PRODUCT_NAME", "FeedbackKit"),
            "project_name": project.name,
            "previous_owner_name": _display_name(previous),
        },
        project_id=project.id,
    )
    return 1
