"""SDK usage events ("screen opened", "feedback list viewed") and their stats."""
from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func

from feedbackkit.errors import ValidationError
from feedbackkit.extensions import db
from feedbackkit.models.project import Project
from feedbackkit.models.view_event import ViewEvent
from feedbackkit.services import access
from feedbackkit.services.transactions import transactional
from feedbackkit.utils.validators import clean_str

RECENT_LIMIT = 100
STATS_RECENT_LIMIT = 10
STATS_DAYS = 30
MAX_PROPERTIES = 50


def _clean_properties(properties) -> Optional[Dict[str, str]]:
    if properties is None:
        return None
    if not isinstance(properties, dict):
        raise ValidationError("properties must be an object", field="properties")
    if len(properties) > MAX_PROPERTIES:
        raise ValidationError(f"At most {MAX_PROPERTIES} properties are allowed", field="properties")
    out = {}
    for key, value in properties.items():
        if isinstance(value, (dict, list)):
            raise ValidationError("property values must be strings", field="properties")
        out[str(key)[:255]] = "" if value is None else str(value)[:1000]
    return out


@transactional
def track_event(project: Project, actor: access.Actor, event_name, user_id, properties=None) -> ViewEvent:
    access.ensure_can_write(project, actor, access.TRACK_EVENT)
    name = clean_str(event_name)
    if name is None:
        raise ValidationError("Event name cannot be empty", field="event_name")
    uid = clean_str(user_id)
    if uid is None:
        raise ValidationError("User ID cannot be empty", field="user_id")

    row = ViewEvent(project_id=project.id, event_name=name, user_id=uid, properties=_clean_properties(properties))
    db.session.add(row)
    db.session.flush()
    return row


def list_events(project: Project, limit: int = RECENT_LIMIT) -> List[ViewEvent]:
    return (
        db.session.query(ViewEvent)
        .filter(ViewEvent.project_id == project.id)
        .order_by(ViewEvent.created_at.desc(), ViewEvent.id.desc())
        .limit(limit)
        .all()
    )


def _utc_day(ts: datetime) -> date:
    # SQLite hands back naive UTC datetimes
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts.date()


def _daily(project_ids: Sequence[int], days: int, today: date) -> List[dict]:
    start = today - timedelta(days=days - 1)
    since = datetime(start.year, start.month, start.day, tzinfo=timezone.utc)
    rows = (
        db.session.query(ViewEvent.created_at, ViewEvent.event_name, ViewEvent.user_id)
        .filter(ViewEvent.project_id.in_(project_ids), ViewEvent.created_at >= since)
        .all()
    )
    counts = defaultdict(Counter)
    users = defaultdict(set)
    for created_at, name, uid in rows:
        day = _utc_day(created_at)
        counts[day][name] += 1
        users[day].add(uid)

    out = []
    for offset in range(days):
        day = start + timedelta(days=offset)
        out.append({
            "date": day.isoformat(),
            "total_count": sum(counts[day].values()),
            "unique_users": len(users[day]),
            "event_breakdown": dict(counts[day]),
        })
    return out


def event_stats(project_ids: Sequence[int], days: int = STATS_DAYS, today: Optional[date] = None) -> dict:
    """Totals, per-name breakdown (busiest first), recent events and one row per day for the last `days` days."""
    project_ids = list(project_ids)
    today = today or datetime.now(timezone.utc).date()
    scope = ViewEvent.project_id.in_(project_ids)

    total = db.session.query(func.count(ViewEvent.id)).filter(scope).scalar() or 0
    unique = db.session.query(func.count(func.distinct(ViewEvent.user_id))).filter(scope).scalar() or 0
    breakdown = (
        db.session.query(
            ViewEvent.event_name,
            func.count(ViewEvent.id).label("total_count"),
            func.count(func.distinct(ViewEvent.user_id)).label("unique_users"),
        )
        .filter(scope)
        .group_by(ViewEvent.event_name)
        .order_by(func.count(ViewEvent.id).desc(), ViewEvent.event_name.asc())
        .all()
    )
    recent = (
        db.session.query(ViewEvent)
        .filter(scope)
        .order_by(ViewEvent.created_at.desc(), ViewEvent.id.desc())
        .limit(STATS_RECENT_LIMIT)
        .all()
    )
    return {
        "total_events": total,
        "unique_users": unique,
        "event_breakdown": [
            {"event_name": name, "total_count": count, "unique_users": users}
            for name, count, users in breakdown
        ],
        "recent_events": [e.to_dict() for e in recent],
        "daily_stats": _daily(project_ids, days, today),
    }
