from __future__ import annotations

from flask import Blueprint, g, request

from app.marketplace.db import db_session
from app.marketplace.modules.drafts import service
from app.marketplace.modules.projects.service import serialize_project
from app.marketplace.modules.visitors.service import serialize_estimate
from app.marketplace.rbac import require_permission
from app.marketplace.responses import api_ok, json_body

bp = Blueprint("drafts_api", __name__)


@bp.post("/projects/draft/create")
@require_permission("projects.own")
def create():
    s = db_session()
    draft = service.create_draft(s, g.current_user, json_body())
    s.commit()
    return api_ok(service.serialize_draft(draft), "Draft created.", 201)


@bp.get("/projects/draft/my-drafts")
@require_permission("projects.own")
def my_drafts():
    drafts = service.client_drafts(db_session(), g.current_user)
    return api_ok([service.serialize_draft(d) for d in drafts])


@bp.get("/projects/draft/<int:draft_id>")
@require_permission("projects.own")
def detail(draft_id: int):
    return api_ok(service.serialize_draft(service.get_draft(db_session(), draft_id, g.current_user)))


@bp.delete("/projects/draft/<int:draft_id>")
@require_permission("projects.own")
def delete(draft_id: int):
    s = db_session()
    service.delete_draft(s, draft_id, g.current_user)
    s.commit()
    return api_ok(None, "Draft deleted.")


@bp.post("/projects/draft/<int:draft_id>/<any(services, industries, technologies, features):step>")
@require_permission("projects.own")
def selection(draft_id: int, step: str):
    s = db_session()
    draft = service.set_selection(s, draft_id, g.current_user, step, request.get_json(silent=True))
    s.commit()
    return api_ok(service.serialize_draft(draft), f"{step.capitalize()} saved.")


@bp.post("/projects/draft/<int:draft_id>/discount")
@require_permission("projects.own")
def discount(draft_id: int):
    s = db_session()
    draft = service.set_discount(s, draft_id, g.current_user, json_body())
    s.commit()
    return api_ok(service.serialize_draft(draft), "Discount saved.")


@bp.post("/projects/draft/<int:draft_id>/timeline")
@require_permission("projects.own")
def timeline(draft_id: int):
    s = db_session()
    draft = service.set_timeline(s, draft_id, g.current_user, json_body())
    s.commit()
    return api_ok(service.serialize_draft(draft), "Timeline saved.")


@bp.get("/projects/draft/<int:draft_id>/estimate")
@require_permission("projects.own")
def estimate(draft_id: int):
    s = db_session()
    draft = service.get_estimate(s, draft_id, g.current_user)
    s.commit()
    return api_ok(serialize_estimate(draft))


@bp.post("/projects/draft/<int:draft_id>/estimate/accept")
@require_permission("projects.own")
def accept_estimate(draft_id: int):
    s = db_session()
    draft = service.accept_estimate(s, draft_id, g.current_user)
    s.commit()
    return api_ok(serialize_estimate(draft), "Estimate accepted.")


@bp.post("/projects/draft/<int:draft_id>/finalize")
@require_permission("projects.own")
def finalize(draft_id: int):
    s = db_session()
    project = service.finalize_draft(s, draft_id, g.current_user, json_body().get("paymentMethod"))
    s.commit()
    draft = service.get_draft(s, draft_id, g.current_user)
    return api_ok({"draft": service.serialize_draft(draft), "project": serialize_project(project)}, "Project created.", 201)
