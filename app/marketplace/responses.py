"""
JSON envelope shared by every /api/v1 endpoint:

    {"success": bool, "status": int, "message": str, "data": any}
"""
from __future__ import annotations

from typing import Any

from flask import jsonify, request

from app.marketplace.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


def api_ok(data: Any = None, message: str = "OK", status: int = 200):
    return jsonify({"success": True, "status": status, "message": message, "data": data}), status


def api_error(message: str, status: int = 400, data: Any = None):
    return jsonify({"success": False, "status": status, "message": message, "data": data}), status


def json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def page_args(default_per_page: int = DEFAULT_PAGE_SIZE) -> tuple[int, int]:
    """Read ?page=&limit= (1-based page), clamped to sane bounds."""
    try:
        page = int(request.args.get("page") or "1")
    except ValueError:
        page = 1
    try:
        per_page = int(request.args.get("limit") or request.args.get("per_page") or default_per_page)
    except ValueError:
        per_page = default_per_page
    page = max(1, page)
    per_page = max(1, min(per_page, MAX_PAGE_SIZE))
    return page, per_page


def pagination(page: int, per_page: int, total: int) -> dict:
    total_pages = (total + per_page - 1) // per_page if total else 0
    return {
        "page": page,
        "limit": per_page,
        "total": total,
        "totalPages": total_pages,
        "hasPrev": page > 1,
        "hasNext": page < total_pages,
    }
