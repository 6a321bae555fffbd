from __future__ import annotations

from flask import Blueprint, g

from app.marketplace.db import db_session
from app.marketplace.modules.pricing import service
from app.marketplace.rbac import require_permission
from app.marketplace.responses import api_ok, json_body

bp = Blueprint("pricing_api", __name__)


@bp.get("/pricing/catalog")
def catalog():
    return api_ok(service.list_catalog(db_session()))


@bp.get("/admin/pricing/stats")
@require_permission("pricing.edit")
def stats():
    return api_ok(service.pricing_stats(db_session()))


@bp.get("/admin/pricing/<kind>")
@require_permission("pricing.edit")
def list_kind(kind: str):
    k = service.get_kind(kind)
    return api_ok(service.list_catalog(db_session())[k.key])


@bp.post("/admin/pricing/<kind>")
@require_permission("pricing.edit")
def create_kind(kind: str):
    k = service.get_kind(kind)
    s = db_session()
    item = service.create_item(s, k, json_body(), g.current_user)
    s.commit()
    return api_ok(service.serialize_item(k, item), "Created.", 201)


@bp.patch("/admin/pricing/<kind>/<int:item_id>")
@require_permission("pricing.edit")
def update_kind(kind: str, item_id: int):
    k = service.get_kind(kind)
    s = db_session()
    item = service.update_item(s, k, item_id, json_body(), g.current_user)
    s.commit()
    return api_ok(service.serialize_item(k, item), "Updated.")


@bp.delete("/admin/pricing/<kind>/<int:item_id>")
@require_permission("pricing.edit")
def delete_kind(kind: str, item_id: int):
    k = service.get_kind(kind)
    s = db_session()
    service.delete_item(s, k, item_id, g.current_user)
    s.commit()
    return api_ok(None, "Deleted.")
