from flask import jsonify, request
from flask_login import current_user

from feedbackkit.services import invites
from feedbackkit.services import projects as project_service
from feedbackkit.services.access import PRIVILEGED_ROLES
from feedbackkit.services.dispatcher import dispatch_after_commit
from feedbackkit.utils.validators import json_object, parse_bool
from . import bp


def _payload() -> dict:
    return json_object(request.get_json(silent=True))


def _project_payload(project, actor) -> dict:
    # Only people who can manage settings get to see the SDK credential
    data = project.to_dict(include_api_key=actor.role in PRIVILEGED_ROLES)
    data["role"] = actor.role
    return data


@bp.get("/projects")
def list_projects():
    out = []
    for project in project_service.projects_for_user(current_user):
        _, actor = project_service.project_for_user(current_user, project.id)
        out.append(_project_payload(project, actor))
    return jsonify(out), 200


@bp.post("/projects")
def create_project():
    data = _payload()
    project = project_service.create_project(current_user, data.get("name"), data.get("description"))
    _, actor = project_service.project_for_user(current_user, project.id)
    return jsonify(_project_payload(project, actor)), 201


@bp.get("/projects/<int:project_id>")
def get_project(project_id: int):
    project, actor = project_service.project_for_user(current_user, project_id)
    return jsonify(_project_payload(project, actor)), 200


@bp.post("/projects/<int:project_id>/archive")
def archive_project(project_id: int):
    project, actor = project_service.project_for_user(current_user, project_id)
    project = project_service.set_archived(project, actor, True)
    return jsonify(_project_payload(project, actor)), 200


@bp.post("/projects/<int:project_id>/unarchive")
def unarchive_project(project_id: int):
    project, actor = project_service.project_for_user(current_user, project_id)
    project = project_service.set_archived(project, actor, False)
    return jsonify(_project_payload(project, actor)), 200


@bp.post("/projects/<int:project_id>/api-key")
def rotate_api_key(project_id: int):
    project, actor = project_service.project_for_user(current_user, project_id)
    project = project_service.regenerate_api_key(project, actor)
    return jsonify(_project_payload(project, actor)), 200


@bp.post("/projects/<int:project_id>/transfer")
def transfer_project(project_id: int):
    data = _payload()
    project, actor = project_service.project_for_user(current_user, project_id)
    project = project_service.transfer_ownership(
        project, actor, new_owner_id=data.get("new_owner_id"), email=data.get("email")
    )
    dispatch_after_commit()
    _, actor = project_service.project_for_user(current_user, project.id)
    return jsonify(_project_payload(project, actor)), 200


@bp.put("/projects/<int:project_id>/statuses")
def update_statuses(project_id: int):
    project, actor = project_service.project_for_user(current_user, project_id)
    project = project_service.update_allowed_statuses(project, actor, _payload().get("statuses"))
    return jsonify(_project_payload(project, actor)), 200


@bp.put("/projects/<int:project_id>/email-statuses")
def update_email_statuses(project_id: int):
    project, actor = project_service.project_for_user(current_user, project_id)
    project = project_service.update_email_notify_statuses(project, actor, _payload().get("statuses"))
    return jsonify(_project_payload(project, actor)), 200


@bp.put("/projects/<int:project_id>/integrations/<kind>")
def configure_integration(project_id: int, kind: str):
    project, actor = project_service.project_for_user(current_user, project_id)
    project = project_service.configure_integration(project, actor, kind, _payload().get("settings"))
    return jsonify(_project_payload(project, actor)), 200


@bp.post("/projects/<int:project_id>/members")
def add_member(project_id: int):
    data = _payload()
    project, actor = project_service.project_for_user(current_user, project_id)
    member = project_service.add_member(project, actor, data.get("email"), data.get("role") or "member")
    return jsonify({"user_id": member.user_id, "email": member.user.email, "role": member.role}), 201


@bp.delete("/projects/<int:project_id>/members/<int:user_id>")
def remove_member(project_id: int, user_id: int):
    project, actor = project_service.project_for_user(current_user, project_id)
    project_service.remove_member(project, actor, user_id)
    return "", 204


@bp.put("/projects/<int:project_id>/preferences")
def update_preferences(project_id: int):
    data = _payload()
    project, _ = project_service.project_for_user(current_user, project_id)

    changes = {}
    if "muted" in data:
        changes["muted"] = parse_bool(data["muted"])
    for name in ("notify_status_changes", "notify_new_feedback"):
        if name in data:
            # null resets to the personal preference
            changes[name] = None if data[name] is None else parse_bool(data[name])

    pref = project_service.set_member_preference(project, current_user, **changes)
    return jsonify({
        "project_id": project.id,
        "muted": pref.muted,
        "notify_status_changes": pref.notify_status_changes,
        "notify_new_feedback": pref.notify_new_feedback,
    }), 200


@bp.post("/projects/<int:project_id>/invites")
def create_invite(project_id: int):
    data = _payload()
    project, actor = project_service.project_for_user(current_user, project_id)
    invite = invites.invite_member(project, actor, data.get("email"), data.get("role") or "member")
    dispatch_after_commit()
    return jsonify(invite.to_dict()), 201


@bp.get("/projects/<int:project_id>/invites")
def list_invites(project_id: int):
    project, actor = project_service.project_for_user(current_user, project_id)
    return jsonify([i.to_dict() for i in invites.list_invites(project, actor)]), 200


@bp.delete("/projects/<int:project_id>/invites/<int:invite_id>")
def revoke_invite(project_id: int, invite_id: int):
    project, actor = project_service.project_for_user(current_user, project_id)
    invites.revoke_invite(project, actor, invite_id)
    return "", 204


@bp.get("/invites/<code>")
def preview_invite(code: str):
    return jsonify(invites.preview_invite(current_user, code)), 200


@bp.post("/invites/accept")
def accept_invite():
    member = invites.accept_invite(current_user, _payload().get("code"))
    project, actor = project_service.project_for_user(current_user, member.project_id)
    return jsonify(_project_payload(project, actor)), 200
