from __future__ import annotations

from flask import Blueprint, g, request

from app.marketplace.db import db_session
from app.marketplace.modules.visitors import service
from app.marketplace.rbac import require_permission
from app.marketplace.responses import api_ok, json_body, page_args, pagination

bp = Blueprint("visitors_api", __name__)


# Public onboarding steps ----------------------------------------------------


@bp.post("/visitors/check-email")
def check_email():
    payload = json_body()
    return api_ok(service.check_email(db_session(), payload.get("email") or ""))


@bp.post("/visitors/create")
def create():
    s = db_session()
    visitor, created = service.create_visitor(s, json_body(), ip_address=request.remote_addr)
    s.commit()
    if created:
        return api_ok(service.serialize_visitor(visitor), "Visitor created.", 201)
    return api_ok(service.serialize_visitor(visitor), "Resumed existing visitor.")


@bp.post("/visitors/<int:visitor_id>/<any(services, industries, technologies, features):step>")
def selection(visitor_id: int, step: str):
    s = db_session()
    visitor = service.set_selection(s, visitor_id, step, request.get_json(silent=True))
    s.commit()
    return api_ok(service.serialize_visitor(visitor), f"{step.capitalize()} saved.")


@bp.post("/visitors/<int:visitor_id>/discount")
def discount(visitor_id: int):
    s = db_session()
    visitor = service.set_discount(s, visitor_id, json_body())
    s.commit()
    return api_ok(service.serialize_visitor(visitor), "Discount saved.")


@bp.post("/visitors/<int:visitor_id>/timeline")
def timeline(visitor_id: int):
    s = db_session()
    visitor = service.set_timeline(s, visitor_id, json_body())
    s.commit()
    return api_ok(service.serialize_visitor(visitor), "Timeline saved.")


@bp.get("/visitors/<int:visitor_id>/estimate")
def estimate(visitor_id: int):
    s = db_session()
    visitor = service.get_estimate(s, visitor_id)
    s.commit()
    return api_ok(service.serialize_estimate(visitor))


@bp.post("/visitors/<int:visitor_id>/estimate/accept")
def accept_estimate(visitor_id: int):
    s = db_session()
    visitor = service.accept_estimate(s, visitor_id)
    s.commit()
    return api_ok(service.serialize_estimate(visitor), "Estimate accepted.")


@bp.post("/visitors/<int:visitor_id>/service-agreement")
def service_agreement(visitor_id: int):
    s = db_session()
    visitor = service.accept_service_agreement(s, visitor_id, json_body().get("accepted"))
    s.commit()
    return api_ok(service.serialize_visitor(visitor), "Service agreement accepted.")


# Staff ------------------------------------------------------------------------


@bp.get("/admin/visitors")
@require_permission("visitors.view")
def admin_list():
    page, per_page = page_args()
    rows, total = service.list_visitors(
        db_session(),
        search=(request.args.get("search") or "").strip(),
        status=(request.args.get("status") or "ALL").strip(),
        business_type=(request.args.get("businessType") or "").strip(),
        referral_source=(request.args.get("referralSource") or "").strip(),
        page=page,
        per_page=per_page,
    )
    return api_ok({"visitors": [service.serialize_visitor(v) for v in rows], "pagination": pagination(page, per_page, total)})


@bp.get("/admin/visitors/<int:visitor_id>")
@require_permission("visitors.view")
def admin_detail(visitor_id: int):
    return api_ok(service.serialize_visitor(service.get_visitor(db_session(), visitor_id)))


@bp.patch("/admin/visitors/<int:visitor_id>")
@require_permission("visitors.edit")
def admin_update(visitor_id: int):
    s = db_session()
    visitor = service.update_visitor(s, visitor_id, json_body(), g.current_user)
    s.commit()
    return api_ok(service.serialize_visitor(visitor), "Visitor updated.")


@bp.patch("/admin/visitors/<int:visitor_id>/estimate")
@require_permission("visitors.edit")
def admin_adjust_estimate(visitor_id: int):
    s = db_session()
    visitor = service.adjust_estimate(s, visitor_id, json_body(), g.current_user)
    s.commit()
    return api_ok(service.serialize_estimate(visitor), "Estimate adjusted.")


@bp.delete("/admin/visitors/<int:visitor_id>")
@require_permission("visitors.delete")
def admin_delete(visitor_id: int):
    s = db_session()
    service.delete_visitor(s, visitor_id, g.current_user)
    s.commit()
    return api_ok(None, "Visitor deleted.")
