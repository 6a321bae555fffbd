from flask import Blueprint, g, redirect, render_template

from app.marketplace.gating import HOME_BY_ROLE

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    # Normally answered by the gating hook; kept for when gating is bypassed (e.g. tests of the view).
    return redirect(HOME_BY_ROLE.get(getattr(g, "current_role", None) or "", "/unauthorized"))


@bp.get("/unauthorized")
def unauthorized():
    return render_template("unauthorized.html"), 403


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for the load balancer. No DB access.
    """
    return "ok", 200
