from __future__ import annotations

from flask import Blueprint, g, request

from app.marketplace.db import db_session
from app.marketplace.modules.bids import service
from app.marketplace.modules.projects.service import get_project
from app.marketplace.rbac import require_permission
from app.marketplace.responses import api_ok, json_body

bp = Blueprint("bids_api", __name__)


@bp.post("/bids")
@require_permission("bids.place")
def place():
    s = db_session()
    bid = service.place_bid(s, json_body(), g.current_user)
    s.commit()
    return api_ok(service.serialize_bid(bid), "Bid placed.", 201)


@bp.get("/freelancer/bids")
@require_permission("bids.place")
def my_bids():
    return api_ok({"bids": [service.serialize_bid(b) for b in service.freelancer_bids(db_session(), g.current_user)]})


@bp.post("/bids/<int:bid_id>/withdraw")
@require_permission("bids.place")
def withdraw(bid_id: int):
    s = db_session()
    bid = service.withdraw_bid(s, bid_id, g.current_user)
    s.commit()
    return api_ok(service.serialize_bid(bid), "Bid withdrawn.")


@bp.get("/admin/projects/<int:project_id>/bids")
@require_permission("bids.view_all")
def project_bids(project_id: int):
    s = db_session()
    get_project(s, project_id)
    bids = service.project_bids(s, project_id, (request.args.get("status") or "").strip().upper())
    return api_ok({"bids": [service.serialize_bid(b) for b in bids]})


@bp.post("/admin/bids/<int:bid_id>/review")
@require_permission("bids.review")
def review(bid_id: int):
    payload = json_body()
    s = db_session()
    bid = service.review_bid(s, bid_id, payload.get("action") or "", g.current_user, reason=payload.get("reason"))
    s.commit()
    return api_ok(service.serialize_bid(bid), f"Bid {bid.status.lower()}.")


@bp.get("/admin/bids/stats")
@require_permission("bids.view_all")
def stats():
    return api_ok(service.bid_stats(db_session()))
