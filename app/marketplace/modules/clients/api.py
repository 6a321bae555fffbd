from __future__ import annotations

from flask import Blueprint, g, request

from app.marketplace.db import db_session
from app.marketplace.modules.clients import service
from app.marketplace.modules.projects.service import client_kpis, client_projects
from app.marketplace.rbac import require_permission
from app.marketplace.responses import api_ok, page_args, pagination

bp = Blueprint("clients_api", __name__)


@bp.get("/admin/clients")
@require_permission("clients.view")
def admin_list():
    s = db_session()
    page, per_page = page_args()
    rows, total = service.list_clients(s, search=(request.args.get("search") or "").strip(), page=page, per_page=per_page)
    return api_ok({"clients": [service.serialize_client(s, u) for u in rows], "pagination": pagination(page, per_page, total)})


@bp.get("/admin/clients/<int:user_id>")
@require_permission("clients.view")
def admin_detail(user_id: int):
    s = db_session()
    return api_ok(service.client_detail(s, service.get_client(s, user_id)))


@bp.get("/client/profile")
@require_permission("projects.own")
def profile():
    s = db_session()
    return api_ok(service.client_detail(s, g.current_user))


@bp.get("/client/kpi")
@require_permission("projects.own")
def kpi():
    return api_ok(client_kpis(client_projects(db_session(), g.current_user)))
