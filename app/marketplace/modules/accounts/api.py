from __future__ import annotations

from flask import Blueprint, g, request

from app.marketplace.auth import clear_login_attempts, login_rate_limited, record_login_attempt
from app.marketplace.db import db_session
from app.marketplace.modules.accounts import service
from app.marketplace.rbac import require_login
from app.marketplace.responses import api_error, api_ok, json_body
from app.marketplace.tokens import issue_access_token

bp = Blueprint("accounts_api", __name__)


@bp.post("/register")
def register():
    s = db_session()
    user = service.register(s, json_body())
    s.commit()
    return api_ok(service.user_summary(user), "Registered. Check your email for the verification code.", 201)


@bp.post("/sendOTP")
def send_otp():
    payload = json_body()
    s = db_session()
    service.resend_verification(s, payload.get("email") or "")
    s.commit()
    return api_ok(None, "A new verification code has been sent.")


@bp.post("/verifyEmail")
def verify_email():
    payload = json_body()
    email = payload.get("email") or ""
    code = str(payload.get("OTP") or payload.get("otp") or "")
    if not email or not code:
        return api_error("email and OTP are required.", 400)
    s = db_session()
    user = service.verify_email(s, email, code)
    s.commit()
    return api_ok(service.user_summary(user), "Email verified.")


@bp.post("/login")
def login():
    ip = request.remote_addr or "unknown"
    if login_rate_limited(ip):
        return api_error("Too many login attempts. Please wait 5 minutes.", 429)
    record_login_attempt(ip)

    payload = json_body()
    s = db_session()
    user = service.authenticate(s, payload.get("email") or "", payload.get("password") or "")
    clear_login_attempts(ip)
    s.commit()
    return api_ok({"accessToken": issue_access_token(user), "user": service.user_summary(user)}, "Logged in.")


@bp.get("/me")
@require_login
def me():
    return api_ok(service.user_summary(g.current_user))


@bp.post("/change-password")
@require_login
def change_password():
    payload = json_body()
    s = db_session()
    service.change_password(s, g.current_user, payload.get("currentPassword") or "", payload.get("newPassword") or "")
    s.commit()
    return api_ok(None, "Password changed.")


@bp.post("/forgot-password")
def forgot_password():
    payload = json_body()
    s = db_session()
    service.request_password_reset(s, payload.get("email") or "")
    s.commit()
    return api_ok(None, "If an account exists for this email, a reset code has been sent.")


@bp.post("/reset-password")
def reset_password():
    payload = json_body()
    s = db_session()
    service.reset_password(
        s,
        payload.get("email") or "",
        str(payload.get("OTP") or payload.get("otp") or ""),
        payload.get("newPassword") or "",
    )
    s.commit()
    return api_ok(None, "Password has been reset.")
