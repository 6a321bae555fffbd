from __future__ import annotations

from datetime import datetime

from flask import Blueprint, Response, current_app, g, request

from app.marketplace.db import db_session
from app.marketplace.errors import ValidationError
from app.marketplace.modules.payments import service
from app.marketplace.modules.payments.stripe_client import PaymentGatewayError, WebhookSignatureError, get_gateway
from app.marketplace.modules.projects.service import get_project, require_project_access
from app.marketplace.rbac import require_login, require_permission
from app.marketplace.responses import api_error, api_ok, json_body, page_args, pagination
from app.marketplace.utils import parse_int

bp = Blueprint("payments_api", __name__)


@bp.post("/payment/project/create-checkout-session")
@require_permission("payments.pay")
def create_checkout_session():
    payload = json_body()
    try:
        project_id = parse_int(payload.get("projectId"), field="projectId", minimum=1)
    except ValueError as e:
        raise ValidationError(str(e))
    s = db_session()
    project = get_project(s, project_id)
    try:
        payment, url = service.create_checkout(s, get_gateway(), project, payload, g.current_user)
    except PaymentGatewayError as e:
        current_app.logger.error("Checkout creation failed (project id=%s): %s", project_id, e)
        return api_error("Payment provider is unavailable. Please try again.", 502)
    s.commit()
    return api_ok(
        {"sessionId": payment.checkout_session_id, "url": url, "paymentId": payment.id, "amount": float(payment.amount)},
        "Checkout session created.",
        201,
    )


@bp.get("/payment/project/<int:project_id>/status")
@require_login
def project_status(project_id: int):
    s = db_session()
    project = require_project_access(s, project_id, g.current_user)
    summary = service.payment_summary(s, project)
    return api_ok(
        {
            "projectId": project.id,
            **summary.to_dict(),
            "payments": [service.serialize_payment(p) for p in service.project_payments(s, project.id)],
        }
    )


@bp.post("/verify-payment")
def verify_payment():
    s = db_session()
    body, status = service.verify_payment(s, get_gateway(), json_body())
    if status == 200:
        s.commit()
    return api_ok(body, body["message"], status) if status < 400 else api_error(body["message"], status, body)


@bp.post("/payment/webhook")
def webhook():
    payload = request.get_data()
    signature = request.headers.get("Stripe-Signature") or ""
    try:
        event = get_gateway().construct_event(payload, signature)
    except WebhookSignatureError as e:
        current_app.logger.warning("Rejected Stripe webhook: %s", e)
        return api_error(str(e), 400)
    s = db_session()
    outcome = service.handle_webhook_event(s, event)
    s.commit()
    current_app.logger.info("Stripe webhook %s -> %s", event.get("type"), outcome)
    return api_ok({"received": True, "outcome": outcome})


# Staff ----------------------------------------------------------------------------


@bp.get("/admin/payments")
@require_permission("payments.view_all")
def admin_payments():
    page, per_page = page_args()
    rows, total = service.list_payments(
        db_session(), status=(request.args.get("status") or "").strip().upper(), page=page, per_page=per_page
    )
    return api_ok({"payments": [service.serialize_payment(p) for p in rows], "pagination": pagination(page, per_page, total)})


@bp.get("/admin/payments/export")
@require_permission("payments.view_all")
def admin_payments_export():
    csv_text = service.export_payments_csv(db_session())
    filename = f"payments-{datetime.utcnow().strftime('%Y%m%d')}.csv"
    return Response(
        csv_text,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@bp.get("/admin/clients/payments")
@require_permission("payments.view_all")
def admin_client_payments():
    return api_ok({"clients": service.client_payment_summaries(db_session())})


@bp.get("/admin/payouts")
@require_permission("payouts.manage")
def admin_payouts():
    freelancer_raw = (request.args.get("freelancerId") or "").strip()
    payouts = service.list_payouts(
        db_session(),
        status=(request.args.get("status") or "").strip().upper(),
        freelancer_id=int(freelancer_raw) if freelancer_raw.isdigit() else None,
    )
    return api_ok({"payouts": [service.serialize_payout(p) for p in payouts]})


@bp.post("/admin/payouts")
@require_permission("payouts.manage")
def admin_create_payout():
    s = db_session()
    payout = service.create_payout(s, json_body(), g.current_user)
    s.commit()
    return api_ok(service.serialize_payout(payout), "Payout created.", 201)


@bp.patch("/admin/payouts/<int:payout_id>")
@require_permission("payouts.manage")
def admin_update_payout(payout_id: int):
    s = db_session()
    payout = service.update_payout_status(s, payout_id, json_body(), g.current_user)
    s.commit()
    return api_ok(service.serialize_payout(payout), f"Payout marked {payout.status}.")


# Own views --------------------------------------------------------------------------


@bp.get("/freelancer/payouts")
@require_permission("payouts.view_own")
def freelancer_payouts():
    payouts = service.list_payouts(db_session(), freelancer_id=g.current_user.id)
    return api_ok(
        {
            "payouts": [service.serialize_payout(p) for p in payouts],
            "totalPaid": float(sum(p.amount for p in payouts if p.status == "PAID")),
            "totalPending": float(sum(p.amount for p in payouts if p.status == "PENDING")),
        }
    )


@bp.get("/client/payments")
@require_permission("payments.pay")
def client_payments():
    s = db_session()
    payments = service.client_payments(s, g.current_user)
    return api_ok(
        {
            "payments": [service.serialize_payment(p) for p in payments],
            "totalSpent": float(service.client_total_spent(s, g.current_user.id)),
        }
    )
