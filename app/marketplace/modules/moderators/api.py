from __future__ import annotations

from flask import Blueprint, g, request

from app.marketplace.db import db_session
from app.marketplace.errors import ValidationError
from app.marketplace.modules.moderators import service
from app.marketplace.modules.projects.service import get_project
from app.marketplace.rbac import require_permission
from app.marketplace.responses import api_ok, json_body, page_args, pagination

bp = Blueprint("moderators_api", __name__)


@bp.get("/admin/moderators")
@require_permission("moderators.manage")
def list_moderators():
    page, per_page = page_args()
    include_inactive = (request.args.get("includeInactive") or "").strip().lower() in ("1", "true", "yes")
    rows, total = service.list_moderators(
        db_session(),
        include_inactive=include_inactive,
        search=(request.args.get("search") or "").strip(),
        page=page,
        per_page=per_page,
    )
    return api_ok({"moderators": [service.serialize_moderator(u) for u in rows], "pagination": pagination(page, per_page, total)})


@bp.post("/admin/moderators")
@require_permission("moderators.manage")
def create():
    s = db_session()
    user = service.create_moderator(s, json_body(), g.current_user)
    s.commit()
    return api_ok(service.serialize_moderator(user), "Moderator created.", 201)


@bp.get("/admin/moderators/stats")
@require_permission("moderators.manage")
def stats():
    return api_ok(service.moderator_stats(db_session()))


@bp.get("/admin/moderators/<int:user_id>")
@require_permission("moderators.manage")
def detail(user_id: int):
    s = db_session()
    user = service.get_moderator(s, user_id)
    return api_ok(service.serialize_moderator(user, projects=service.moderated_projects(s, user)))


@bp.patch("/admin/moderators/<int:user_id>")
@require_permission("moderators.manage")
def toggle_active(user_id: int):
    payload = json_body()
    if not isinstance(payload.get("isActive"), bool):
        raise ValidationError("isActive (boolean) is required.")
    s = db_session()
    user = service.set_active(s, service.get_moderator(s, user_id), payload["isActive"], g.current_user)
    s.commit()
    return api_ok(service.serialize_moderator(user), "Moderator updated.")


@bp.delete("/admin/moderators/<int:user_id>")
@require_permission("moderators.manage")
def delete(user_id: int):
    s = db_session()
    released = service.delete_moderator(s, service.get_moderator(s, user_id), g.current_user)
    s.commit()
    return api_ok({"unassignedProjects": released}, "Moderator removed.")


@bp.post("/admin/moderators/<int:user_id>/projects/<int:project_id>")
@require_permission("moderators.manage")
def assign(user_id: int, project_id: int):
    s = db_session()
    project = service.assign_project(s, service.get_moderator(s, user_id), get_project(s, project_id), g.current_user)
    s.commit()
    return api_ok({"projectId": project.id, "moderatorId": project.moderator_id}, "Moderator assigned.")


@bp.delete("/admin/projects/<int:project_id>/moderator")
@require_permission("moderators.manage")
def unassign(project_id: int):
    s = db_session()
    project = service.unassign_project(s, get_project(s, project_id), g.current_user)
    s.commit()
    return api_ok({"projectId": project.id, "moderatorId": None}, "Moderator unassigned.")
