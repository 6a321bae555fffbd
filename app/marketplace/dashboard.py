"""
Server-rendered dashboards. Access to each section is decided by the gating hook;
the permission decorators below are the second line.
"""
from __future__ import annotations

from datetime import datetime

from flask import Blueprint, abort, g, render_template, request
from sqlalchemy import func

from app.marketplace.db import db_session
from app.marketplace.models import AuditEvent
from app.marketplace.modules.bids.models import Bid
from app.marketplace.modules.bids.service import freelancer_bids
from app.marketplace.modules.payments.models import Payment
from app.marketplace.modules.payments.service import list_payments, list_payouts, payment_summary, project_payments
from app.marketplace.modules.projects.models import Project
from app.marketplace.modules.projects.service import (
    can_view_project,
    client_kpis,
    client_projects,
    freelancer_projects,
    is_milestone_overdue,
    list_projects,
    project_progress,
)
from app.marketplace.modules.visitors.models import Visitor
from app.marketplace.modules.visitors.service import get_visitor, list_visitors
from app.marketplace.rbac import require_permission
from app.marketplace.responses import page_args, pagination
from app.marketplace.utils import money

bp = Blueprint("dashboard", __name__)


# Administrator / moderator ---------------------------------------------------------


@bp.get("/Administrator/")
@bp.get("/Administrator")
@require_permission("admin.view")
def admin_index():
    s = db_session()
    total_visitors = s.query(Visitor).filter(Visitor.deleted_at.is_(None)).count()
    converted = s.query(Visitor).filter(Visitor.deleted_at.is_(None), Visitor.is_converted.is_(True)).count()
    by_status = dict(s.query(Project.status, func.count(Project.id)).group_by(Project.status).all())
    revenue = s.query(func.coalesce(func.sum(Payment.amount), 0)).filter(Payment.status == "SUCCEEDED").scalar()
    stats = {
        "visitors": total_visitors,
        "converted": converted,
        "conversion_rate": round(converted * 100 / total_visitors) if total_visitors else 0,
        "projects": sum(by_status.values()),
        "projects_by_status": by_status,
        "pending_bids": s.query(Bid).filter(Bid.status == "PENDING").count(),
        "revenue": money(revenue),
    }
    return render_template("admin/index.html", stats=stats)


@bp.get("/Administrator/visitors")
@require_permission("visitors.view")
def admin_visitors():
    page, per_page = page_args(default_per_page=25)
    search = (request.args.get("search") or "").strip()
    status = (request.args.get("status") or "ALL").strip().upper()
    if status not in ("ALL", "CONVERTED", "NOT_CONVERTED"):
        status = "ALL"
    rows, total = list_visitors(db_session(), search=search, status=status, page=page, per_page=per_page)
    return render_template(
        "admin/visitors/list.html",
        visitors=rows,
        search=search,
        status=status,
        pager=pagination(page, per_page, total),
    )


@bp.get("/Administrator/visitors/<int:visitor_id>")
@require_permission("visitors.view")
def admin_visitor_detail(visitor_id: int):
    try:
        visitor = get_visitor(db_session(), visitor_id)
    except LookupError:
        abort(404)
    return render_template("admin/visitors/detail.html", v=visitor)


@bp.get("/Administrator/project-status")
@require_permission("projects.view_all")
def admin_project_status():
    page, per_page = page_args(default_per_page=25)
    status = (request.args.get("status") or "").strip().upper()
    if status not in ("", "PENDING", "ONGOING", "COMPLETED", "CANCELLED"):
        status = ""
    rows, total = list_projects(db_session(), status=status, page=page, per_page=per_page)
    return render_template(
        "admin/project_status.html",
        projects=[(p, project_progress(p.milestones)) for p in rows],
        status=status,
        pager=pagination(page, per_page, total),
    )


@bp.get("/Administrator/payments")
@require_permission("payments.view_all")
def admin_payments():
    page, per_page = page_args(default_per_page=25)
    rows, total = list_payments(db_session(), page=page, per_page=per_page)
    return render_template("admin/payments.html", payments=rows, pager=pagination(page, per_page, total))


@bp.get("/Administrator/audit")
@require_permission("audit.view")
def admin_audit():
    s = db_session()
    page, per_page = page_args(default_per_page=50)
    q = s.query(AuditEvent)
    action = (request.args.get("action") or "").strip()
    if action:
        q = q.filter(AuditEvent.action.like(f"{action}%"))
    total = q.count()
    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return render_template("admin/audit.html", events=events, action=action, pager=pagination(page, per_page, total))


# Client ------------------------------------------------------------------------------


@bp.get("/client/")
@bp.get("/client")
@require_permission("projects.own")
def client_index():
    projects = client_projects(db_session(), g.current_user)
    return render_template(
        "client/index.html",
        projects=[(p, project_progress(p.milestones)) for p in projects],
        kpis=client_kpis(projects),
    )


@bp.get("/client/projects/<int:project_id>")
@require_permission("projects.own")
def client_project(project_id: int):
    s = db_session()
    project = s.get(Project, project_id)
    if project is None:
        abort(404)
    if not can_view_project(g.current_user, project):
        abort(403)
    now = datetime.utcnow()
    return render_template(
        "client/project.html",
        project=project,
        progress=project_progress(project.milestones),
        milestones=[(m, is_milestone_overdue(m, now)) for m in project.milestones],
        summary=payment_summary(s, project),
        payments=project_payments(s, project.id),
    )


# Freelancer --------------------------------------------------------------------------


@bp.get("/freelancer/")
@bp.get("/freelancer")
@require_permission("projects.assigned")
def freelancer_index():
    s = db_session()
    projects = freelancer_projects(s, g.current_user)
    return render_template(
        "freelancer/index.html",
        projects=[(p, project_progress(p.milestones)) for p in projects],
        bids=freelancer_bids(s, g.current_user),
        payouts=list_payouts(s, freelancer_id=g.current_user.id),
    )
