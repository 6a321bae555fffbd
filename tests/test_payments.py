import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.marketplace.db import session_scope
from app.marketplace.models import User
from app.marketplace.modules.payments.models import Payment
from app.marketplace.modules.payments.stripe_client import StripeGateway, WebhookSignatureError
from app.marketplace.modules.payments.tiers import compute_payment_options
from app.marketplace.modules.projects.models import Project
from app.marketplace.modules.visitors import service as visitors_service
from app.marketplace.modules.visitors.models import Visitor


def test_tiers_are_cumulative():
    summary = compute_payment_options(Decimal("1000"), Decimal("0"))
    assert [(o.value, o.amount, o.remaining) for o in summary.options] == [
        ("25", Decimal("250.00"), Decimal("250.00")),
        ("50", Decimal("500.00"), Decimal("500.00")),
        ("100", Decimal("1000.00"), Decimal("1000.00")),
    ]
    assert summary.default_option == "25"

    summary = compute_payment_options(1000, 250)
    assert summary.option("25").is_paid
    assert summary.option("50").remaining == Decimal("250.00")
    assert summary.default_option == "50"
    assert summary.remaining == Decimal("750.00")

    summary = compute_payment_options(1000, 1000)
    assert summary.is_fully_paid
    assert summary.default_option == "100"


@pytest.fixture()
def billing(make_user, make_project, login):
    client_id = make_user("client", "payer@example.com")
    make_user("client", "other@example.com")
    make_user("admin", "admin@example.com")
    return {
        "client_id": client_id,
        "project_id": make_project(client_id, total="1000.00"),
        "client": login("payer@example.com"),
        "other": login("other@example.com"),
        "admin": login("admin@example.com"),
    }


def _checkout(client, headers, project_id, **body):
    return client.post(
        "/api/v1/payment/project/create-checkout-session",
        json={"projectId": project_id, **body},
        headers=headers,
    )


def _webhook(client, event, signature="valid-signature"):
    return client.post(
        "/api/v1/payment/webhook",
        data=json.dumps(event),
        content_type="application/json",
        headers={"Stripe-Signature": signature},
    )


def _completed(session_id, payment_status="paid"):
    return {
        "type": "checkout.session.completed",
        "data": {"object": {"id": session_id, "payment_status": payment_status, "payment_intent": "pi_123"}},
    }


def test_checkout_and_webhook(app, client, gateway, billing):
    pid = billing["project_id"]
    r = _checkout(client, billing["client"], pid, option="25")
    assert r.status_code == 201
    data = r.json["data"]
    assert data["amount"] == 250.0
    assert data["url"].startswith("https://checkout.test/")
    assert gateway.created[-1]["amount_cents"] == 25000
    assert gateway.created[-1]["metadata"]["option"] == "25"
    sid = data["sessionId"]

    assert _webhook(client, _completed(sid), signature="forged").status_code == 400
    assert _webhook(client, _completed(sid, "unpaid")).json["data"]["outcome"] == "awaiting_payment"
    assert _webhook(client, _completed("cs_unknown")).json["data"]["outcome"] == "unknown_session"
    assert _webhook(client, {"type": "invoice.paid", "data": {"object": {}}}).json["data"]["outcome"] == "ignored"

    r = _webhook(client, _completed(sid))
    assert r.status_code == 200
    assert r.json["data"]["outcome"] == "succeeded"
    assert _webhook(client, _completed(sid)).json["data"]["outcome"] == "duplicate"

    r = client.get(f"/api/v1/payment/project/{pid}/status", headers=billing["client"])
    status = r.json["data"]
    assert status["totalPaid"] == 250.0
    assert status["remainingAmount"] == 750.0
    assert status["defaultOption"] == "50"
    assert status["payments"][0]["status"] == "SUCCEEDED"

    assert _checkout(client, billing["client"], pid, option="25").status_code == 400
    r = _checkout(client, billing["client"], pid, option="50")
    assert r.json["data"]["amount"] == 250.0

    with session_scope(app) as s:
        payment = s.query(Payment).filter(Payment.checkout_session_id == sid).one()
        assert payment.payment_intent_id == "pi_123"
        assert payment.paid_at is not None


def test_checkout_expired_and_failed(app, client, gateway, billing):
    pid = billing["project_id"]
    first = _checkout(client, billing["client"], pid, option="100").json["data"]["sessionId"]
    second = _checkout(client, billing["client"], pid, option="100").json["data"]["sessionId"]

    r = _webhook(client, {"type": "checkout.session.expired", "data": {"object": {"id": first}}})
    assert r.json["data"]["outcome"] == "canceled"
    r = _webhook(client, {"type": "checkout.session.async_payment_failed", "data": {"object": {"id": second}}})
    assert r.json["data"]["outcome"] == "failed"
    r = _webhook(client, {"type": "checkout.session.expired", "data": {"object": {"id": second}}})
    assert r.json["data"]["outcome"] == "duplicate"

    with session_scope(app) as s:
        statuses = {p.checkout_session_id: p.status for p in s.query(Payment).all()}
    assert statuses == {first: "CANCELED", second: "FAILED"}


def test_checkout_custom_amounts_and_access(client, gateway, billing):
    pid = billing["project_id"]
    assert _checkout(client, billing["client"], pid, amount="1000.01").status_code == 400
    assert _checkout(client, billing["client"], pid, amount="0").status_code == 400
    assert _checkout(client, billing["client"], pid, option="33").status_code == 400
    r = _checkout(client, billing["client"], pid, amount="120.50")
    assert r.status_code == 201
    assert gateway.created[-1]["amount_cents"] == 12050

    assert _checkout(client, billing["other"], pid, option="25").status_code == 403
    assert _checkout(client, billing["admin"], pid, option="25").status_code == 403
    assert _checkout(client, billing["client"], 9999, option="25").status_code == 404
    assert client.get(f"/api/v1/payment/project/{pid}/status", headers=billing["other"]).status_code == 403

    gateway.fail = True
    assert _checkout(client, billing["client"], pid, option="25").status_code == 502


def test_fully_paid_project_rejects_checkout(app, client, gateway, billing):
    pid = billing["project_id"]
    with session_scope(app) as s:
        s.add(Payment(project_id=pid, client_id=billing["client_id"], amount=Decimal("1000.00"), status="SUCCEEDED"))
    r = _checkout(client, billing["client"], pid, option="100")
    assert r.status_code == 400
    assert "fully paid" in r.json["message"]


def test_verify_payment_registers_client(app, client, gateway, outbox):
    with session_scope(app) as s:
        s.add(
            Visitor(
                full_name="Pat Payer",
                business_email="pat@acme.test",
                company_name="Acme",
                services=[{"name": "Web Development", "childServices": []}],
                calculated_total=Decimal("2000.00"),
                estimated_days=45,
            )
        )
    gateway.add_paid_session("cs_paid_1", 50000, "pat@acme.test")

    r = client.post("/api/v1/verify-payment", json={})
    assert r.status_code == 400

    r = client.post(
        "/api/v1/verify-payment",
        json={"clientEmail": "Pat@Acme.test", "paymentSessionId": "cs_paid_1", "clientData": {"fullName": "Pat Payer"}},
    )
    assert r.status_code == 200
    data = r.json["data"]
    assert data["paymentStatus"] == "COMPLETED"
    assert data["isClientRegistered"] is True
    assert outbox[-1].to == "pat@acme.test"
    assert outbox[-1].subject == "Reset your password"

    with session_scope(app) as s:
        user = s.get(User, data["clientId"])
        assert user.email_verified_at is not None
        project = s.query(Project).filter(Project.client_id == user.id).one()
        assert project.total_amount == Decimal("2000.00")
        payment = s.query(Payment).filter(Payment.checkout_session_id == "cs_paid_1").one()
        assert payment.status == "SUCCEEDED"
        assert payment.amount == Decimal("500.00")
        assert payment.project_id == project.id

    # Second call for the same email: already a client.
    r = client.post("/api/v1/verify-payment", json={"clientEmail": "pat@acme.test"})
    assert r.json["data"]["paymentStatus"] == "COMPLETED"
    assert r.json["data"]["clientId"] == data["clientId"]


def test_verify_payment_without_payment(client, gateway, make_user):
    r = client.post("/api/v1/verify-payment", json={"clientEmail": "nobody@acme.test"})
    assert r.status_code == 200
    assert r.json["data"]["paymentStatus"] == "PAYMENT_FAILED"
    assert r.json["data"]["isPaymentComplete"] is False

    gateway.paid_emails.add("history@acme.test")
    r = client.post("/api/v1/verify-payment", json={"clientEmail": "history@acme.test"})
    assert r.json["data"]["paymentStatus"] == "COMPLETED"

    make_user("freelancer", "fl@acme.test", profile_status="ACCEPTED")
    r = client.post("/api/v1/verify-payment", json={"clientEmail": "fl@acme.test"})
    assert r.status_code == 409

    # Stripe being unreachable reads as "no payment found", not as a server error.
    gateway.fail = True
    gateway.paid_emails.add("late@acme.test")
    r = client.post("/api/v1/verify-payment", json={"clientEmail": "late@acme.test", "paymentSessionId": "cs_x"})
    assert r.status_code == 200
    assert r.json["data"]["paymentStatus"] == "PAYMENT_FAILED"
    r = client.post("/api/v1/verify-payment", json={"clientEmail": "late@acme.test"})
    assert r.json["data"]["paymentStatus"] == "PAYMENT_FAILED"


def test_verify_payment_registration_failure_is_an_error(app, client, gateway, monkeypatch):
    def _broken(s, client_user):
        raise OperationalError("INSERT INTO projects", {}, Exception("database is locked"))

    monkeypatch.setattr(visitors_service, "convert_visitor_for_client", _broken)
    gateway.paid_emails.add("sam@acme.test")
    r = client.post("/api/v1/verify-payment", json={"clientEmail": "sam@acme.test"})
    assert r.status_code == 500
    assert r.json["data"]["paymentStatus"] == "ERROR"
    assert r.json["data"]["isClientRegistered"] is False
    with session_scope(app) as s:
        assert s.query(User).filter(User.email == "sam@acme.test").count() == 0


def test_admin_payment_views(app, client, gateway, billing):
    pid = billing["project_id"]
    sid = _checkout(client, billing["client"], pid, option="25").json["data"]["sessionId"]
    _webhook(client, _completed(sid))

    r = client.get("/api/v1/admin/payments?status=SUCCEEDED", headers=billing["admin"])
    assert r.json["data"]["pagination"]["total"] == 1

    r = client.get("/api/v1/admin/payments/export", headers=billing["admin"])
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    lines = r.data.decode().strip().splitlines()
    assert lines[0].startswith("id,created_at,paid_at,status,amount")
    assert "SUCCEEDED" in lines[1]
    assert "payer@example.com" in lines[1]

    r = client.get("/api/v1/admin/clients/payments", headers=billing["admin"])
    by_email = {c["email"]: c for c in r.json["data"]["clients"]}
    assert by_email["payer@example.com"]["totalSpent"] == 250.0
    assert by_email["other@example.com"]["paymentCount"] == 0

    r = client.get("/api/v1/client/payments", headers=billing["client"])
    assert r.json["data"]["totalSpent"] == 250.0
    assert client.get("/api/v1/admin/payments", headers=billing["client"]).status_code == 403


def test_payouts(client, make_user, make_project, login):
    make_user("admin", "admin@example.com")
    fl_id = make_user("freelancer", "fl@example.com", profile_status="ACCEPTED")
    client_id = make_user("client", "c@example.com")
    pid = make_project(client_id, freelancer_ids=(fl_id,))
    admin = login("admin@example.com")
    fl = login("fl@example.com")

    r = client.post("/api/v1/admin/payouts", json={"freelancerId": client_id, "amount": 100}, headers=admin)
    assert r.status_code == 400
    r = client.post("/api/v1/admin/payouts", json={"freelancerId": fl_id, "amount": 100, "payoutType": "TIP"}, headers=admin)
    assert r.status_code == 400
    r = client.post(
        "/api/v1/admin/payouts",
        json={"freelancerId": fl_id, "amount": 100, "projectId": pid, "milestoneId": 12345},
        headers=admin,
    )
    assert r.status_code == 400

    r = client.post(
        "/api/v1/admin/payouts",
        json={"freelancerId": fl_id, "amount": "300", "payoutType": "project", "projectId": pid},
        headers=admin,
    )
    assert r.status_code == 201
    payout_id = r.json["data"]["id"]
    client.post("/api/v1/admin/payouts", json={"freelancerId": fl_id, "amount": 50, "payoutType": "BONUS"}, headers=admin)

    assert client.patch(f"/api/v1/admin/payouts/{payout_id}", json={"status": "PENDING"}, headers=admin).status_code == 400
    r = client.patch(f"/api/v1/admin/payouts/{payout_id}", json={"status": "paid", "reference": "TX-1"}, headers=admin)
    assert r.status_code == 200
    assert r.json["data"]["status"] == "PAID"
    assert r.json["data"]["paidAt"] is not None
    assert client.patch(f"/api/v1/admin/payouts/{payout_id}", json={"status": "CANCELED"}, headers=admin).status_code == 400

    r = client.get("/api/v1/freelancer/payouts", headers=fl)
    assert r.status_code == 200
    assert r.json["data"]["totalPaid"] == 300.0
    assert r.json["data"]["totalPending"] == 50.0
    assert client.post("/api/v1/admin/payouts", json={}, headers=fl).status_code == 403

    r = client.get(f"/api/v1/admin/payouts?freelancerId={fl_id}&status=PENDING", headers=admin)
    assert len(r.json["data"]["payouts"]) == 1


def _stripe_signature(payload: bytes, secret: str) -> str:
    ts = int(time.time())
    digest = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def test_stripe_gateway_verifies_signatures():
    payload = json.dumps(_completed("cs_sig")).encode()
    gateway = StripeGateway(api_key="sk_test_x", currency="usd", webhook_secret="whsec_test")

    event = gateway.construct_event(payload, _stripe_signature(payload, "whsec_test"))
    assert event["data"]["object"]["id"] == "cs_sig"

    with pytest.raises(WebhookSignatureError):
        gateway.construct_event(payload, _stripe_signature(payload, "whsec_other"))
    with pytest.raises(WebhookSignatureError):
        StripeGateway(api_key="", currency="usd", webhook_secret="").construct_event(payload, "t=1,v1=x")
