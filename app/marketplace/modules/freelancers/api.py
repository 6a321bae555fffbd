from __future__ import annotations

from flask import Blueprint, g, request

from app.marketplace.db import db_session
from app.marketplace.errors import NotFoundError
from app.marketplace.modules.freelancers import service
from app.marketplace.modules.projects.service import open_projects, serialize_project
from app.marketplace.rbac import require_permission
from app.marketplace.responses import api_ok, json_body, page_args, pagination

bp = Blueprint("freelancers_api", __name__)


def _page(status: str | None):
    page, per_page = page_args()
    rows, total = service.list_profiles(
        db_session(),
        status=status,
        search=(request.args.get("search") or "").strip(),
        page=page,
        per_page=per_page,
    )
    return api_ok({"freelancers": [service.serialize_profile(p) for p in rows], "pagination": pagination(page, per_page, total)})


@bp.get("/freelancer/getAllFreeLancerRequest")
@require_permission("freelancers.view")
def all_requests():
    return _page("PENDING")


@bp.get("/freelancer/listAllFreelancers")
@require_permission("freelancers.view")
def list_all():
    return _page("ACCEPTED")


@bp.get("/freelancer/registrations")
@require_permission("freelancers.view")
def registrations():
    raw = (request.args.get("isAccepted") or "").strip().lower()
    if raw in ("true", "1"):
        return _page("ACCEPTED")
    if raw in ("false", "0"):
        return _page("PENDING")
    return _page(None)


@bp.patch("/freelancer/acceptFreeLancerRequest/<int:profile_id>")
@require_permission("freelancers.review")
def accept(profile_id: int):
    s = db_session()
    profile = service.accept_request(s, profile_id, g.current_user)
    s.commit()
    return api_ok(service.serialize_profile(profile), "Freelancer accepted.")


@bp.patch("/freelancer/trashFreeLancerRequest/<int:profile_id>")
@require_permission("freelancers.review")
def trash(profile_id: int):
    s = db_session()
    profile = service.trash_request(s, profile_id, g.current_user, reason=json_body().get("reason"))
    s.commit()
    return api_ok(service.serialize_profile(profile), "Freelancer request trashed.")


@bp.post("/admin/freelancers")
@require_permission("freelancers.edit")
def admin_create():
    s = db_session()
    profile = service.admin_create_freelancer(s, json_body(), g.current_user)
    s.commit()
    return api_ok(service.serialize_profile(profile), "Freelancer created.", 201)


@bp.patch("/admin/freelancers/<int:profile_id>")
@require_permission("freelancers.edit")
def admin_update(profile_id: int):
    s = db_session()
    profile = service.admin_update_freelancer(s, profile_id, json_body(), g.current_user)
    s.commit()
    return api_ok(service.serialize_profile(profile), "Freelancer updated.")


@bp.get("/freelancer/profile")
@require_permission("bids.place")
def own_profile():
    profile = service.profile_for_user(db_session(), g.current_user)
    if profile is None:
        raise NotFoundError("No freelancer profile for this account.")
    return api_ok(service.serialize_profile(profile))


@bp.patch("/freelancer/profile")
@require_permission("bids.place")
def update_own_profile():
    s = db_session()
    profile = service.update_own_profile(s, g.current_user, json_body())
    s.commit()
    return api_ok(service.serialize_profile(profile), "Profile updated.")


@bp.get("/freelancer/projects")
@require_permission("bids.place")
def biddable_projects():
    return api_ok({"projects": [serialize_project(p) for p in open_projects(db_session())]})
