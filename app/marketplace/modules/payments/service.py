from __future__ import annotations

import csv
import io
import logging
import secrets
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from app.marketplace.audit import record_event
from app.marketplace.constants import PAYOUT_STATUSES, PAYOUT_TYPES, ROLE_CLIENT, ROLE_FREELANCER
from app.marketplace.errors import ForbiddenError, NotFoundError, ValidationError
from app.marketplace.models import Role, User
from app.marketplace.modules.payments.models import FreelancerPayout, Payment
from app.marketplace.modules.payments.stripe_client import PaymentGatewayError, StripeGateway
from app.marketplace.modules.payments.tiers import PaymentSummary, compute_payment_options
from app.marketplace.modules.projects.models import Project
from app.marketplace.utils import clean_str, iso, money, money_json, normalize_email, parse_int, to_cents, to_decimal

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Totals and options
# ---------------------------------------------------------------------------


def total_paid(s: "Session", project_id: int) -> Decimal:
    v = (
        s.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.project_id == project_id, Payment.status == "SUCCEEDED")
        .scalar()
    )
    return money(v)


def payment_summary(s: "Session", project: Project) -> PaymentSummary:
    return compute_payment_options(project.total_amount or 0, total_paid(s, project.id))


def project_payments(s: "Session", project_id: int) -> list[Payment]:
    return s.query(Payment).filter(Payment.project_id == project_id).order_by(Payment.created_at.desc(), Payment.id.desc()).all()


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


def _default_urls(project: Project) -> tuple[str, str]:
    base = current_app.config.get("PUBLIC_BASE_URL") or ""
    page = f"{base}/dashboard/client/projects/{project.id}"
    return f"{page}?payment=success&session_id={{CHECKOUT_SESSION_ID}}", f"{page}?payment=cancelled"


def resolve_charge_amount(summary: PaymentSummary, payload: dict) -> tuple[Decimal, str | None]:
    """
    Work out what a checkout should charge: the remaining part of a tier ("25", "50", "100")
    or a custom amount no larger than the outstanding balance.
    """
    if summary.is_fully_paid:
        raise ValidationError("This project is already fully paid.")
    option = clean_str(payload.get("option"))
    if option is not None:
        opt = summary.option(option)
        if opt is None:
            raise ValidationError("option must be one of: 25, 50, 100.")
        if opt.is_paid:
            raise ValidationError(f"The {opt.label} has already been paid.")
        return opt.remaining, opt.value

    try:
        amount = money(to_decimal(payload.get("amount"), field="amount"))
    except ValueError as e:
        raise ValidationError(str(e))
    if amount <= 0:
        raise ValidationError("amount must be greater than zero.")
    if amount > summary.remaining:
        raise ValidationError(f"amount exceeds the remaining balance of {summary.remaining}.")
    return amount, None


def create_checkout(s: "Session", gateway: StripeGateway, project: Project, payload: dict, user: User) -> tuple[Payment, str | None]:
    if project.client_id != user.id:
        raise ForbiddenError("Only the project's client can pay for it.")
    summary = payment_summary(s, project)
    amount, option = resolve_charge_amount(summary, payload)

    success_default, cancel_default = _default_urls(project)
    label = f"{project.title} ({option}% milestone)" if option else project.title
    checkout = gateway.create_checkout_session(
        amount_cents=to_cents(amount),
        product_name=label[:250],
        success_url=clean_str(payload.get("successUrl")) or success_default,
        cancel_url=clean_str(payload.get("cancelUrl")) or cancel_default,
        customer_email=user.email,
        metadata={"project_id": str(project.id), "client_id": str(user.id), "option": option or "custom"},
    )
    now = datetime.utcnow()
    payment = Payment(
        project_id=project.id,
        client_id=user.id,
        amount=amount,
        currency=gateway.currency,
        payment_option=option,
        status="PENDING",
        checkout_session_id=checkout["id"],
        customer_email=user.email,
        created_at=now,
        updated_at=now,
    )
    s.add(payment)
    s.flush()
    record_event(
        s,
        actor=user,
        action="payment.checkout",
        entity_type="Payment",
        entity_id=str(payment.id),
        metadata={"project_id": project.id, "amount": str(amount), "option": option, "session_id": checkout["id"]},
    )
    return payment, checkout.get("url")


def mark_payment_succeeded(s: "Session", payment: Payment, *, payment_intent_id: str | None = None, actor: User | None = None) -> bool:
    """Returns False when the payment was already recorded as succeeded."""
    if payment.status == "SUCCEEDED":
        return False
    now = datetime.utcnow()
    payment.status = "SUCCEEDED"
    payment.payment_intent_id = payment_intent_id or payment.payment_intent_id
    payment.paid_at = now
    payment.updated_at = now
    record_event(
        s,
        actor=actor,
        action="payment.succeeded",
        entity_type="Payment",
        entity_id=str(payment.id),
        metadata={"project_id": payment.project_id, "amount": str(payment.amount)},
    )
    logger.info("Payment id=%s succeeded (project id=%s amount=%s)", payment.id, payment.project_id, payment.amount)
    return True


def handle_webhook_event(s: "Session", event: dict[str, Any]) -> str:
    """
    Apply a verified Stripe event. Returns a short outcome string for logging/response.
    """
    etype = event.get("type") or ""
    obj = ((event.get("data") or {}).get("object")) or {}
    session_id = obj.get("id")
    if not etype.startswith("checkout.session."):
        return "ignored"
    payment = s.query(Payment).filter(Payment.checkout_session_id == session_id).one_or_none() if session_id else None
    if payment is None:
        logger.warning("Webhook %s for unknown checkout session %s", etype, session_id)
        return "unknown_session"

    if etype in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
        if obj.get("payment_status") != "paid":
            return "awaiting_payment"
        changed = mark_payment_succeeded(s, payment, payment_intent_id=obj.get("payment_intent"))
        return "succeeded" if changed else "duplicate"
    if etype in ("checkout.session.expired", "checkout.session.async_payment_failed"):
        if payment.status != "PENDING":
            return "duplicate"
        payment.status = "CANCELED" if etype.endswith("expired") else "FAILED"
        payment.failure_reason = etype
        payment.updated_at = datetime.utcnow()
        record_event(s, actor=None, action="payment." + payment.status.lower(), entity_type="Payment", entity_id=str(payment.id))
        return payment.status.lower()
    return "ignored"


# ---------------------------------------------------------------------------
# Visitor payment verification
# ---------------------------------------------------------------------------


def _verify_response(status: str, message: str, *, complete: bool, registered: bool, client_id: int | None = None) -> dict:
    return {
        "isPaymentComplete": complete,
        "isClientRegistered": registered,
        "paymentStatus": status,
        "clientId": client_id,
        "message": message,
    }


def _register_paying_client(s: "Session", email: str, client_data: dict) -> User:
    from app.marketplace.modules.accounts.service import create_user, request_password_reset

    user = create_user(
        s,
        email=email,
        # Random password; the welcome email carries a reset code to choose one.
        password=secrets.token_urlsafe(24),
        role_key=ROLE_CLIENT,
        full_name=clean_str(client_data.get("fullName")) or "Client",
        phone=clean_str(client_data.get("phone")),
        is_active=True,
        verified=True,
    )
    record_event(s, actor=user, action="account.register_after_payment", entity_type="User", entity_id=str(user.id))
    request_password_reset(s, email)
    return user


def verify_payment(s: "Session", gateway: StripeGateway, payload: dict) -> tuple[dict, int]:
    """
    Confirm that a visitor paid, then make sure a client account exists for the email.
    Returns (response body, HTTP status).
    """
    from app.marketplace.modules.accounts.service import find_user_by_email, is_valid_email
    from app.marketplace.modules.visitors.service import convert_visitor_for_client

    email = normalize_email(payload.get("clientEmail"))
    session_id = clean_str(payload.get("paymentSessionId"))
    client_data = payload.get("clientData") if isinstance(payload.get("clientData"), dict) else {}
    if not email or not is_valid_email(email):
        return _verify_response("INVALID_REQUEST", "Missing client email", complete=False, registered=False), 400

    existing = find_user_by_email(s, email)
    if existing is not None:
        if ROLE_CLIENT not in existing.role_keys:
            return _verify_response("INVALID_REQUEST", "This email belongs to a non-client account.", complete=False, registered=False), 409
        return _verify_response(
            "COMPLETED", "Welcome back! Your payment is verified.", complete=True, registered=True, client_id=existing.id
        ), 200

    verified = False
    session_info: dict[str, Any] | None = None
    if session_id:
        try:
            session_info = gateway.retrieve_checkout_session(session_id)
            verified = session_info.get("payment_status") == "paid"
        except PaymentGatewayError:
            logger.warning("Checkout session %s could not be verified; falling back to payment history", session_id)
            # A webhook may already have recorded this session.
            verified = (
                s.query(Payment)
                .filter(Payment.checkout_session_id == session_id, Payment.status == "SUCCEEDED")
                .first()
                is not None
            )
    if not verified:
        try:
            verified = gateway.email_has_successful_payment(email)
        except PaymentGatewayError:
            logger.warning("Payment history lookup failed for %s; treating as unpaid", email)

    if not verified:
        return _verify_response(
            "PAYMENT_FAILED",
            "No completed payment found for this email. Please complete the payment process.",
            complete=False,
            registered=False,
        ), 200

    try:
        client = _register_paying_client(s, email, client_data)
        project = convert_visitor_for_client(s, client)
        if session_id and session_info and session_info.get("amount_total"):
            _record_verified_session(s, gateway, session_id, session_info, client, project)
    except SQLAlchemyError:
        s.rollback()
        current_app.logger.exception("Client registration after payment failed (email=%s)", email)
        return _verify_response("ERROR", "An error occurred while verifying payment", complete=False, registered=False), 500
    return _verify_response(
        "COMPLETED", "Payment verified and client registered successfully", complete=True, registered=True, client_id=client.id
    ), 200


def _record_verified_session(
    s: "Session", gateway: StripeGateway, session_id: str, session_info: dict[str, Any], client: User, project: Project | None
) -> None:
    payment = s.query(Payment).filter(Payment.checkout_session_id == session_id).one_or_none()
    if payment is None:
        now = datetime.utcnow()
        payment = Payment(
            project_id=project.id if project else None,
            client_id=client.id,
            amount=money(Decimal(int(session_info["amount_total"])) / 100),
            currency=gateway.currency,
            status="PENDING",
            checkout_session_id=session_id,
            customer_email=client.email,
            created_at=now,
            updated_at=now,
        )
        s.add(payment)
        s.flush()
    payment.client_id = client.id
    mark_payment_succeeded(s, payment, payment_intent_id=session_info.get("payment_intent"), actor=client)


# ---------------------------------------------------------------------------
# Staff views
# ---------------------------------------------------------------------------


def list_payments(s: "Session", *, status: str = "", page: int = 1, per_page: int = 10) -> tuple[list[Payment], int]:
    q = s.query(Payment)
    if status:
        q = q.filter(Payment.status == status)
    total = q.count()
    rows = q.order_by(Payment.created_at.desc(), Payment.id.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return rows, total


EXPORT_COLUMNS = ("id", "created_at", "paid_at", "status", "amount", "currency", "payment_option", "project_id", "project_title", "client_email", "checkout_session_id")


def export_payments_csv(s: "Session") -> str:
    buf = io.StringIO()
    w = csv.writer(buf)
    w.writerow(EXPORT_COLUMNS)
    for p in s.query(Payment).order_by(Payment.created_at.asc(), Payment.id.asc()).all():
        w.writerow(
            [
                p.id,
                iso(p.created_at) or "",
                iso(p.paid_at) or "",
                p.status,
                str(money(p.amount)),
                p.currency,
                p.payment_option or "",
                p.project_id or "",
                p.project.title if p.project else "",
                p.client.email if p.client else (p.customer_email or ""),
                p.checkout_session_id or "",
            ]
        )
    return buf.getvalue()


def client_payment_summaries(s: "Session") -> list[dict]:
    rows = (
        s.query(
            User.id,
            User.email,
            User.full_name,
            func.count(Payment.id),
            func.coalesce(func.sum(Payment.amount), 0),
            func.max(Payment.paid_at),
        )
        .join(User.roles)
        .filter(Role.key == ROLE_CLIENT)
        .outerjoin(Payment, (Payment.client_id == User.id) & (Payment.status == "SUCCEEDED"))
        .group_by(User.id, User.email, User.full_name)
        .order_by(User.id.asc())
        .all()
    )
    return [
        {
            "clientId": uid,
            "email": email,
            "fullName": name,
            "paymentCount": int(count or 0),
            "totalSpent": money_json(money(total)),
            "lastPaidAt": iso(last),
        }
        for uid, email, name, count, total, last in rows
    ]


def client_total_spent(s: "Session", client_id: int) -> Decimal:
    v = (
        s.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.client_id == client_id, Payment.status == "SUCCEEDED")
        .scalar()
    )
    return money(v)


def client_payments(s: "Session", client: User) -> list[Payment]:
    return s.query(Payment).filter(Payment.client_id == client.id).order_by(Payment.created_at.desc(), Payment.id.desc()).all()


# ---------------------------------------------------------------------------
# Freelancer payouts
# ---------------------------------------------------------------------------


def create_payout(s: "Session", payload: dict, actor: User) -> FreelancerPayout:
    try:
        freelancer_id = parse_int(payload.get("freelancerId"), field="freelancerId", minimum=1)
        amount = money(to_decimal(payload.get("amount"), field="amount"))
    except ValueError as e:
        raise ValidationError(str(e))
    if amount <= 0:
        raise ValidationError("amount must be greater than zero.")
    freelancer = s.get(User, freelancer_id)
    if freelancer is None or ROLE_FREELANCER not in freelancer.role_keys:
        raise ValidationError("freelancerId must reference a freelancer.")
    payout_type = (payload.get("payoutType") or "MILESTONE").strip().upper()
    if payout_type not in PAYOUT_TYPES:
        raise ValidationError(f"payoutType must be one of: {', '.join(PAYOUT_TYPES)}")

    project_id = None
    milestone_id = None
    if payload.get("projectId") not in (None, ""):
        project = s.get(Project, parse_int(payload.get("projectId"), field="projectId", minimum=1))
        if project is None:
            raise NotFoundError("Project not found.")
        project_id = project.id
        if payload.get("milestoneId") not in (None, ""):
            mid = parse_int(payload.get("milestoneId"), field="milestoneId", minimum=1)
            if not any(m.id == mid for m in project.milestones):
                raise ValidationError("milestoneId does not belong to the project.")
            milestone_id = mid

    now = datetime.utcnow()
    payout = FreelancerPayout(
        freelancer_id=freelancer.id,
        project_id=project_id,
        milestone_id=milestone_id,
        amount=amount,
        payout_type=payout_type,
        status="PENDING",
        notes=clean_str(payload.get("notes")),
        created_by_user_id=actor.id,
        created_at=now,
        updated_at=now,
    )
    s.add(payout)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="payout.create",
        entity_type="FreelancerPayout",
        entity_id=str(payout.id),
        metadata={"freelancer_id": freelancer.id, "amount": str(amount), "type": payout_type},
    )
    return payout


def update_payout_status(s: "Session", payout_id: int, payload: dict, actor: User) -> FreelancerPayout:
    payout = s.get(FreelancerPayout, payout_id)
    if payout is None:
        raise NotFoundError("Payout not found.")
    status = (payload.get("status") or "").strip().upper()
    if status not in PAYOUT_STATUSES or status == "PENDING":
        raise ValidationError("status must be PAID or CANCELED.")
    if payout.status != "PENDING":
        raise ValidationError(f"Payout is already {payout.status}.")
    now = datetime.utcnow()
    payout.status = status
    payout.reference = clean_str(payload.get("reference")) or payout.reference
    if status == "PAID":
        payout.paid_at = now
    payout.updated_at = now
    record_event(
        s,
        actor=actor,
        action="payout." + status.lower(),
        entity_type="FreelancerPayout",
        entity_id=str(payout.id),
        metadata={"amount": str(payout.amount), "reference": payout.reference},
    )
    return payout


def list_payouts(s: "Session", *, status: str = "", freelancer_id: int | None = None) -> list[FreelancerPayout]:
    q = s.query(FreelancerPayout)
    if status:
        q = q.filter(FreelancerPayout.status == status)
    if freelancer_id:
        q = q.filter(FreelancerPayout.freelancer_id == freelancer_id)
    return q.order_by(FreelancerPayout.created_at.desc(), FreelancerPayout.id.desc()).all()


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_payment(p: Payment) -> dict:
    return {
        "id": p.id,
        "projectId": p.project_id,
        "projectTitle": p.project.title if p.project else None,
        "clientId": p.client_id,
        "clientEmail": p.client.email if p.client else p.customer_email,
        "amount": money_json(p.amount),
        "currency": p.currency,
        "paymentOption": p.payment_option,
        "status": p.status,
        "checkoutSessionId": p.checkout_session_id,
        "paidAt": iso(p.paid_at),
        "createdAt": iso(p.created_at),
    }


def serialize_payout(p: FreelancerPayout) -> dict:
    return {
        "id": p.id,
        "freelancerId": p.freelancer_id,
        "freelancerName": p.freelancer.display_name if p.freelancer else None,
        "projectId": p.project_id,
        "projectTitle": p.project.title if p.project else None,
        "milestoneId": p.milestone_id,
        "amount": money_json(p.amount),
        "payoutType": p.payout_type,
        "status": p.status,
        "notes": p.notes,
        "reference": p.reference,
        "paidAt": iso(p.paid_at),
        "createdAt": iso(p.created_at),
    }
