from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for

from app.marketplace.audit import record_event
from app.marketplace.constants import ROLE_CLAIMS
from app.marketplace.db import db_session
from app.marketplace.errors import ServiceError
from app.marketplace.gating import HOME_BY_ROLE
from app.marketplace.models import User
from app.marketplace.modules.accounts.service import authenticate
from app.marketplace.rbac import user_role_claim
from app.marketplace.security import bearer_token
from app.marketplace.tokens import TokenError, decode_access_token

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def login_rate_limited(ip: str) -> bool:
    """Shared by the HTML form and the JSON API: 5 attempts per IP in a rolling 5 minutes."""
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def record_login_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def clear_login_attempts(ip: str) -> None:
    _login_attempts.pop(ip, None)


def _safe_callback(raw: str | None) -> str | None:
    nxt = (raw or "").strip()
    # Only local paths, to avoid open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


def _user_from_token(token: str) -> tuple[User | None, str | None]:
    claims = decode_access_token(token)
    try:
        user_id = int(claims.get("sub"))
    except (TypeError, ValueError):
        raise TokenError("Invalid subject")
    user = db_session().get(User, user_id)
    if not user or not user.is_active:
        return None, None
    role = claims.get("role")
    held = {ROLE_CLAIMS[k] for k in user.role_keys if k in ROLE_CLAIMS}
    # A claim for a role the user no longer holds falls back to the current primary role.
    if role not in held:
        role = user_role_claim(user)
    return user, role


def load_current_user() -> None:
    """
    Loads g.current_user from a Bearer token (API clients) or the signed session cookie.
    Also assigns a per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    g.current_user = None
    g.current_role = None
    g.token_error = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return

    token = bearer_token(request)
    if token:
        try:
            g.current_user, g.current_role = _user_from_token(token)
        except TokenError as e:
            g.token_error = str(e)
        return

    user_id = session.get("user_id")
    if not user_id:
        return
    try:
        user = db_session().get(User, int(user_id))
    except (TypeError, ValueError):
        user = None
    if not user or not user.is_active:
        session.pop("user_id", None)
        return
    g.current_user = user
    g.current_role = user_role_claim(user)


@bp.get("/login")
def login_get():
    nxt = _safe_callback(request.args.get("callbackUrl")) or ""
    return render_template("auth/login.html", callback_url=nxt)


@bp.post("/login")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = _safe_callback(request.form.get("callbackUrl"))
    ip = request.remote_addr or "unknown"

    if login_rate_limited(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    record_login_attempt(ip)

    s = db_session()
    try:
        user = authenticate(s, email, password)
    except ServiceError as e:
        flash(e.message, "danger")
        return redirect(url_for("auth.login_get", callbackUrl=nxt) if nxt else url_for("auth.login_get"))

    session.clear()
    session["user_id"] = user.id
    clear_login_attempts(ip)
    s.commit()
    current_app.logger.info("Login user id=%s request_id=%s", user.id, g.request_id)
    if nxt:
        return redirect(nxt)
    return redirect(HOME_BY_ROLE.get(user_role_claim(user) or "", "/unauthorized"))


@bp.get("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return redirect(url_for("auth.login_get"))
