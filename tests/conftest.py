import itertools
import json
from datetime import datetime
from decimal import Decimal

import pytest

from app.marketplace import auth as auth_module
from app.marketplace import create_app
from app.marketplace.db import session_scope
from app.marketplace.models import Base
from app.marketplace.modules.accounts.service import create_user
from app.marketplace.modules.freelancers.models import FreelancerProfile
from app.marketplace.modules.payments.stripe_client import PaymentGatewayError, WebhookSignatureError
from app.marketplace.modules.projects.models import Project, ProjectFreelancer
from app.marketplace.seed import seed_roles

PASSWORD = "password123"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("JWT_SECRET", "test-jwt-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("MAIL_BACKEND", "console")
    for k in (
        "S3_ENDPOINT",
        "S3_REGION",
        "S3_BUCKET",
        "S3_ACCESS_KEY_ID",
        "S3_SECRET_ACCESS_KEY",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "CSRF_ENABLED",
    ):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    with session_scope(app) as s:
        seed_roles(s)

    auth_module._login_attempts.clear()
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def outbox(app):
    return app.extensions["mailer"].outbox


_emails = itertools.count(1)


@pytest.fixture()
def make_user(app):
    """Create a user directly in the database; returns the user id."""

    def _make(
        role: str = "client",
        email: str | None = None,
        *,
        password: str = PASSWORD,
        active: bool = True,
        verified: bool = True,
        full_name: str | None = None,
        profile_status: str | None = None,
    ) -> int:
        with session_scope(app) as s:
            user = create_user(
                s,
                email=email or f"{role}{next(_emails)}@example.com",
                password=password,
                role_key=role,
                full_name=full_name or role.title(),
                is_active=active,
                verified=verified,
            )
            if profile_status:
                now = datetime.utcnow()
                s.add(
                    FreelancerProfile(
                        user_id=user.id,
                        status=profile_status,
                        accepted_at=now if profile_status == "ACCEPTED" else None,
                        created_at=now,
                        updated_at=now,
                    )
                )
            return user.id

    return _make


@pytest.fixture()
def login(client):
    """Log in through the JSON API; returns Authorization headers."""

    def _login(email: str, password: str = PASSWORD) -> dict:
        r = client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.json
        return {"Authorization": f"Bearer {r.json['data']['accessToken']}"}

    return _login


@pytest.fixture()
def email_of(app):
    from app.marketplace.models import User

    def _email(user_id: int) -> str:
        with session_scope(app) as s:
            return s.get(User, user_id).email

    return _email


@pytest.fixture()
def make_project(app):
    def _make(
        client_id: int | None,
        *,
        total: str = "1000.00",
        freelancer_ids: tuple[int, ...] = (),
        status: str = "PENDING",
        accepting_bids: bool = True,
        title: str = "Website rebuild",
    ) -> int:
        now = datetime.utcnow()
        with session_scope(app) as s:
            p = Project(
                client_id=client_id,
                title=title,
                status=status,
                total_amount=Decimal(total),
                accepting_bids=accepting_bids,
                created_at=now,
                updated_at=now,
            )
            s.add(p)
            s.flush()
            for fid in freelancer_ids:
                s.add(ProjectFreelancer(project_id=p.id, user_id=fid, created_at=now))
            return p.id

    return _make


class FakeGateway:
    """Stands in for StripeGateway; sessions are kept in memory."""

    currency = "usd"

    def __init__(self):
        self.sessions: dict[str, dict] = {}
        self.created: list[dict] = []
        self.paid_emails: set[str] = set()
        self.fail = False

    def create_checkout_session(self, *, amount_cents, product_name, success_url, cancel_url, customer_email=None, metadata=None):
        if self.fail:
            raise PaymentGatewayError("Stripe checkout session failed: unavailable")
        sid = f"cs_test_{len(self.created) + 1}"
        self.created.append(
            {"id": sid, "amount_cents": amount_cents, "product_name": product_name, "metadata": metadata or {}}
        )
        self.sessions[sid] = {
            "id": sid,
            "payment_status": "unpaid",
            "amount_total": amount_cents,
            "payment_intent": None,
            "customer_email": customer_email,
            "metadata": metadata or {},
        }
        return {"id": sid, "url": f"https://checkout.test/{sid}"}

    def add_paid_session(self, sid: str, amount_cents: int, email: str) -> None:
        self.sessions[sid] = {
            "id": sid,
            "payment_status": "paid",
            "amount_total": amount_cents,
            "payment_intent": f"pi_{sid}",
            "customer_email": email,
            "metadata": {},
        }

    def retrieve_checkout_session(self, session_id):
        if self.fail or session_id not in self.sessions:
            raise PaymentGatewayError(f"Stripe session lookup failed: {session_id}")
        return dict(self.sessions[session_id])

    def email_has_successful_payment(self, email):
        if self.fail:
            raise PaymentGatewayError("Stripe payment history lookup failed")
        return email in self.paid_emails

    def construct_event(self, payload, signature):
        if signature != "valid-signature":
            raise WebhookSignatureError("Invalid Stripe signature.")
        return json.loads(payload)


@pytest.fixture()
def gateway(app):
    fake = FakeGateway()
    app.extensions["payment_gateway"] = fake
    return fake
