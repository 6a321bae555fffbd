from __future__ import annotations

from flask import Blueprint, g, request, send_file

from app.marketplace.db import db_session
from app.marketplace.errors import ForbiddenError, ValidationError
from app.marketplace.modules.projects import documents, service
from app.marketplace.rbac import require_login, require_permission, user_has_permission
from app.marketplace.responses import api_ok, json_body, page_args, pagination
from app.marketplace.storage import get_storage

bp = Blueprint("projects_api", __name__)


@bp.get("/projects/my-projects")
@require_permission("projects.own")
def my_projects():
    projects = service.client_projects(db_session(), g.current_user)
    return api_ok(
        {
            "projects": [service.serialize_project(p) for p in projects],
            "kpis": service.client_kpis(projects),
        }
    )


@bp.get("/projects/<int:project_id>")
@require_login
def project_detail(project_id: int):
    project = service.require_project_access(db_session(), project_id, g.current_user)
    return api_ok(service.serialize_project(project, with_milestones=True))


@bp.patch("/projects/<int:project_id>/discord-url")
@require_login
def discord_url(project_id: int):
    s = db_session()
    project = service.get_project(s, project_id)
    user = g.current_user
    if not (service.is_owner(user, project) or user_has_permission(user, "projects.edit")):
        raise ForbiddenError("Only the project's client or staff can change the chat link.")
    service.update_discord_url(s, project, json_body().get("discordChatUrl"), user)
    s.commit()
    return api_ok(service.serialize_project(project), "Chat link updated.")


# Milestones ---------------------------------------------------------------------


@bp.get("/projects/<int:project_id>/milestones")
@require_login
def milestones(project_id: int):
    project = service.require_project_access(db_session(), project_id, g.current_user)
    return api_ok(
        {
            "milestones": [service.serialize_milestone(m) for m in project.milestones],
            "progress": service.project_progress(project.milestones),
            "isComplete": service.is_project_complete(project.milestones),
        }
    )


@bp.post("/projects/<int:project_id>/milestones")
@require_permission("milestones.edit")
def create_milestone(project_id: int):
    s = db_session()
    project = service.get_project(s, project_id)
    m = service.create_milestone(s, project, json_body(), g.current_user)
    s.commit()
    return api_ok(service.serialize_milestone(m), "Milestone created.", 201)


@bp.patch("/projects/<int:project_id>/milestones/<int:milestone_id>")
@require_login
def update_milestone(project_id: int, milestone_id: int):
    user = g.current_user
    if not (user_has_permission(user, "milestones.edit") or user_has_permission(user, "milestones.update")):
        raise ForbiddenError("You cannot update milestones.")
    s = db_session()
    project = service.require_project_access(s, project_id, user)
    m = service.get_milestone(project, milestone_id)
    service.update_milestone(s, project, m, json_body(), user)
    s.commit()
    return api_ok(
        {"milestone": service.serialize_milestone(m), "projectProgress": service.project_progress(project.milestones), "projectStatus": project.status},
        "Milestone updated.",
    )


# Role views -----------------------------------------------------------------------


@bp.get("/freelancer/my-projects")
@require_permission("projects.assigned")
def freelancer_my_projects():
    projects = service.freelancer_projects(db_session(), g.current_user)
    return api_ok({"projects": [service.serialize_project(p, with_milestones=True) for p in projects]})


@bp.get("/admin/projects")
@require_permission("projects.view_all")
def admin_projects():
    page, per_page = page_args()
    accepting_raw = (request.args.get("acceptingBids") or "").strip().lower()
    accepting = None if accepting_raw == "" else accepting_raw in ("1", "true", "yes")
    rows, total = service.list_projects(
        db_session(),
        status=(request.args.get("status") or "").strip().upper(),
        accepting_bids=accepting,
        search=(request.args.get("search") or "").strip(),
        page=page,
        per_page=per_page,
    )
    return api_ok({"projects": [service.serialize_project(p) for p in rows], "pagination": pagination(page, per_page, total)})


@bp.patch("/admin/projects/<int:project_id>")
@require_permission("projects.edit")
def admin_update_project(project_id: int):
    s = db_session()
    project = service.get_project(s, project_id)
    service.admin_update_project(s, project, json_body(), g.current_user)
    s.commit()
    return api_ok(service.serialize_project(project), "Project updated.")


# Client brief ----------------------------------------------------------------------


@bp.post("/projects/<int:project_id>/client-brief")
@bp.post("/projects/<int:project_id>/client-brief/upload")
@require_login
def upload_brief(project_id: int):
    s = db_session()
    project = service.get_project(s, project_id)
    f = request.files.get("document") or request.files.get("file")
    if f is None or not f.filename:
        raise ValidationError("A PDF file is required (form field 'document').")
    doc = documents.upload_client_brief(
        s,
        get_storage(),
        project,
        filename=f.filename,
        content_type=f.mimetype,
        data=f.read(),
        user=g.current_user,
    )
    s.commit()
    return api_ok(documents.serialize_brief(doc), "Client brief uploaded.", 201)


@bp.get("/projects/<int:project_id>/client-brief")
@require_login
def brief_metadata(project_id: int):
    project = service.get_project(db_session(), project_id)
    return api_ok(documents.serialize_brief(documents.get_client_brief(project, g.current_user)))


@bp.get("/projects/<int:project_id>/client-brief/download")
@require_login
def brief_download(project_id: int):
    s = db_session()
    project = service.get_project(s, project_id)
    doc, fobj = documents.open_client_brief(s, get_storage(), project, g.current_user)
    s.commit()
    return send_file(fobj, mimetype=doc.content_type, as_attachment=True, download_name=doc.original_filename, max_age=0)


# Feedback ----------------------------------------------------------------------------


@bp.post("/feedback/submit")
@require_permission("feedback.submit")
def submit_feedback():
    s = db_session()
    fb = service.submit_feedback(s, json_body(), g.current_user)
    s.commit()
    return api_ok({"id": fb.id, "projectId": fb.project_id, "rating": fb.rating, "comment": fb.comment}, "Thank you for your feedback.", 201)
