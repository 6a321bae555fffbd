import re
from datetime import datetime, timedelta

from app.marketplace.db import session_scope
from app.marketplace.models import AuditEvent, EmailOtp, User
from app.marketplace.modules.freelancers.models import FreelancerProfile


def _register(client, **overrides):
    payload = {
        "username": "alice",
        "fullName": "Alice Doe",
        "email": "alice@example.com",
        "password": "password123",
        "role": "CLIENT",
    }
    payload.update(overrides)
    return client.post("/api/v1/auth/register", json=payload)


def _last_code(outbox) -> str:
    return re.search(r"\b(\d{6})\b", outbox[-1].body).group(1)


def test_register_verify_and_login(client, outbox):
    r = _register(client)
    assert r.status_code == 201
    assert r.json["success"] is True
    assert r.json["data"]["role"] == "CLIENT"
    assert r.json["data"]["emailVerified"] is False

    assert outbox[-1].to == "alice@example.com"
    assert outbox[-1].subject == "Verify your email"
    code = _last_code(outbox)

    r = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": "password123"})
    assert r.status_code == 403

    wrong = "000000" if code != "000000" else "111111"
    r = client.post("/api/v1/auth/verifyEmail", json={"email": "alice@example.com", "OTP": wrong})
    assert r.status_code == 400

    r = client.post("/api/v1/auth/verifyEmail", json={"email": "alice@example.com", "OTP": code})
    assert r.status_code == 200
    assert r.json["data"]["emailVerified"] is True

    r = client.post("/api/v1/auth/login", json={"email": "ALICE@example.com ", "password": "password123"})
    assert r.status_code == 200
    token = r.json["data"]["accessToken"]
    assert r.json["data"]["user"]["role"] == "CLIENT"

    r = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert r.json["data"]["email"] == "alice@example.com"


def test_register_rejects_bad_payload(client):
    r = _register(client, username="a", email="not-an-email", password="short", role="ADMIN")
    assert r.status_code == 400
    assert r.json["success"] is False
    assert len(r.json["data"]["errors"]) >= 3


def test_register_duplicate_email_conflicts(client):
    assert _register(client).status_code == 201
    r = _register(client, username="alice2", email="Alice@Example.com")
    assert r.status_code == 409


def test_freelancer_registration_is_pending(app, client, outbox):
    r = _register(client, username="fred", email="fred@example.com", role="FREELANCER")
    assert r.status_code == 201

    code = _last_code(outbox)
    r = client.post("/api/v1/auth/verifyEmail", json={"email": "fred@example.com", "OTP": code})
    assert r.status_code == 200

    r = client.post("/api/v1/auth/login", json={"email": "fred@example.com", "password": "password123"})
    assert r.status_code == 403

    with session_scope(app) as s:
        user = s.query(User).filter(User.email == "fred@example.com").one()
        assert user.is_active is False
        profile = s.query(FreelancerProfile).filter(FreelancerProfile.user_id == user.id).one()
        assert profile.status == "PENDING"


def test_resend_code_supersedes_previous(client, outbox):
    _register(client)
    first = _last_code(outbox)
    r = client.post("/api/v1/auth/sendOTP", json={"email": "alice@example.com"})
    assert r.status_code == 200
    second = _last_code(outbox)

    if first != second:
        r = client.post("/api/v1/auth/verifyEmail", json={"email": "alice@example.com", "OTP": first})
        assert r.status_code == 400
    r = client.post("/api/v1/auth/verifyEmail", json={"email": "alice@example.com", "OTP": second})
    assert r.status_code == 200


def test_login_failure_is_audited(app, client, make_user):
    make_user("client", "bob@example.com")
    r = client.post("/api/v1/auth/login", json={"email": "bob@example.com", "password": "wrong-password"})
    assert r.status_code == 401
    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").count() == 1


def test_me_requires_valid_token(client):
    assert client.get("/api/v1/auth/me").status_code == 401
    r = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_change_password(client, make_user, login):
    make_user("client", "carol@example.com")
    headers = login("carol@example.com")

    r = client.post(
        "/api/v1/auth/change-password",
        json={"currentPassword": "nope", "newPassword": "newpassword1"},
        headers=headers,
    )
    assert r.status_code == 400

    r = client.post(
        "/api/v1/auth/change-password",
        json={"currentPassword": "password123", "newPassword": "newpassword1"},
        headers=headers,
    )
    assert r.status_code == 200
    login("carol@example.com", "newpassword1")


def test_forgot_and_reset_password(client, make_user, login, outbox):
    make_user("client", "dave@example.com")

    r = client.post("/api/v1/auth/forgot-password", json={"email": "nobody@example.com"})
    assert r.status_code == 200
    assert outbox == []

    r = client.post("/api/v1/auth/forgot-password", json={"email": "dave@example.com"})
    assert r.status_code == 200
    assert outbox[-1].subject == "Reset your password"
    code = _last_code(outbox)

    r = client.post(
        "/api/v1/auth/reset-password",
        json={"email": "dave@example.com", "OTP": code, "newPassword": "brandnew123"},
    )
    assert r.status_code == 200
    login("dave@example.com", "brandnew123")

    # Codes are single use.
    r = client.post(
        "/api/v1/auth/reset-password",
        json={"email": "dave@example.com", "OTP": code, "newPassword": "another1234"},
    )
    assert r.status_code == 400


def test_html_login_rate_limited(client, make_user):
    make_user("client", "erin@example.com")
    for _ in range(5):
        client.post("/login", data={"email": "erin@example.com", "password": "bad-password"})
    r = client.post(
        "/login",
        data={"email": "erin@example.com", "password": "password123"},
        follow_redirects=True,
    )
    assert b"Too many login attempts" in r.data


def test_api_login_rate_limited(client, make_user):
    make_user("client", "erin@example.com")
    for _ in range(5):
        r = client.post("/api/v1/auth/login", json={"email": "erin@example.com", "password": "bad-password"})
        assert r.status_code == 401
    r = client.post("/api/v1/auth/login", json={"email": "erin@example.com", "password": "password123"})
    assert r.status_code == 429
    assert r.json["success"] is False
    assert "Too many login attempts" in r.json["message"]


def test_successful_api_login_resets_attempts(client, make_user, login):
    make_user("client", "erin@example.com")
    for _ in range(4):
        client.post("/api/v1/auth/login", json={"email": "erin@example.com", "password": "bad-password"})
    login("erin@example.com")
    for _ in range(4):
        r = client.post("/api/v1/auth/login", json={"email": "erin@example.com", "password": "bad-password"})
        assert r.status_code == 401
    login("erin@example.com")


def test_expired_verification_code_is_refused(app, client, outbox):
    _register(client)
    code = _last_code(outbox)
    with session_scope(app) as s:
        user = s.query(User).filter(User.email == "alice@example.com").one()
        otp = s.query(EmailOtp).filter(EmailOtp.user_id == user.id).one()
        otp.expires_at = datetime.utcnow() - timedelta(minutes=1)

    r = client.post("/api/v1/auth/verifyEmail", json={"email": "alice@example.com", "OTP": code})
    assert r.status_code == 400
    assert "expired" in r.json["message"]


def test_verification_attempts_are_capped(client, outbox):
    _register(client)
    code = _last_code(outbox)
    wrong = "000000" if code != "000000" else "111111"
    for _ in range(5):
        r = client.post("/api/v1/auth/verifyEmail", json={"email": "alice@example.com", "OTP": wrong})
        assert r.status_code == 400
        assert r.json["message"] == "Invalid code."

    r = client.post("/api/v1/auth/verifyEmail", json={"email": "alice@example.com", "OTP": code})
    assert r.status_code == 400
    assert "Too many attempts" in r.json["message"]

    # A fresh code starts a new count.
    client.post("/api/v1/auth/sendOTP", json={"email": "alice@example.com"})
    r = client.post("/api/v1/auth/verifyEmail", json={"email": "alice@example.com", "OTP": _last_code(outbox)})
    assert r.status_code == 200


def test_verify_email_refuses_verified_account(app, client, make_user):
    make_user("client", "vera@example.com")
    r = client.post("/api/v1/auth/verifyEmail", json={"email": "vera@example.com", "OTP": "123456"})
    assert r.status_code == 400
    assert "already verified" in r.json["message"]
    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "account.verify_email").count() == 0
