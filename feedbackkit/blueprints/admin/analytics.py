from flask import jsonify, request
from flask_login import current_user

from feedbackkit.services import projects as project_service
from feedbackkit.services import view_events
from . import bp


def _days() -> int:
    try:
        days = int(request.args.get("days", view_events.STATS_DAYS))
    except ValueError:
        days = view_events.STATS_DAYS
    return min(max(days, 1), 365)


@bp.get("/projects/<int:project_id>/events")
def list_events(project_id: int):
    project, _ = project_service.project_for_user(current_user, project_id)
    return jsonify([e.to_dict() for e in view_events.list_events(project)]), 200


@bp.get("/projects/<int:project_id>/events/stats")
def project_event_stats(project_id: int):
    project, _ = project_service.project_for_user(current_user, project_id)
    return jsonify(view_events.event_stats([project.id], days=_days())), 200


@bp.get("/events/stats")
def all_event_stats():
    """Across every project the caller owns or belongs to."""
    ids = [p.id for p in project_service.projects_for_user(current_user)]
    return jsonify(view_events.event_stats(ids, days=_days())), 200
