"""
Role-based route gating for the server-rendered pages.

Only "/" and "/dashboard/..." are gated. Everything under a public prefix passes
straight through; the JSON API does its own permission checks.
"""
from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlencode

from flask import g, redirect, request

PUBLIC_PREFIXES = (
    "/api/",
    "/static/",
    "/favicon.ico",
    "/login",
    "/register",
    "/forgot-password",
    "/reset-password",
    "/health",
    "/healthz",
    "/unauthorized",
    "/projects/",
)

ADMIN_DASHBOARD = "/dashboard/Administrator"
FREELANCER_DASHBOARD = "/dashboard/freelancer"
CLIENT_DASHBOARD = "/dashboard/client"

PROTECTED_PREFIXES: tuple[tuple[str, frozenset[str]], ...] = (
    (ADMIN_DASHBOARD, frozenset({"ADMIN", "MODERATOR"})),
    (FREELANCER_DASHBOARD, frozenset({"FREELANCER"})),
    (CLIENT_DASHBOARD, frozenset({"CLIENT"})),
)

HOME_BY_ROLE = {
    "ADMIN": ADMIN_DASHBOARD,
    "MODERATOR": ADMIN_DASHBOARD,
    "FREELANCER": FREELANCER_DASHBOARD,
    "CLIENT": CLIENT_DASHBOARD,
}


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    location: str | None = None


ALLOW = GateDecision(allowed=True)


def _login_redirect(path: str) -> GateDecision:
    return GateDecision(allowed=False, location="/login?" + urlencode({"callbackUrl": path}))


def _matches(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def is_public(path: str) -> bool:
    return path.startswith(PUBLIC_PREFIXES)


def is_gated(path: str) -> bool:
    return path == "/" or _matches(path, "/dashboard")


def decide(path: str, role: str | None, authenticated: bool) -> GateDecision:
    """
    Pure gating decision for a request path.

    role is the token-style role claim (ADMIN, MODERATOR, FREELANCER, CLIENT) or None.
    """
    if is_public(path) or not is_gated(path):
        return ALLOW
    if not authenticated:
        return _login_redirect(path)

    if path == "/":
        home = HOME_BY_ROLE.get(role or "")
        return GateDecision(allowed=False, location=home or "/unauthorized")

    for prefix, roles in PROTECTED_PREFIXES:
        if _matches(path, prefix):
            if role in roles:
                return ALLOW
            return GateDecision(allowed=False, location="/unauthorized")

    # /dashboard itself or an unknown dashboard section: send the user home.
    home = HOME_BY_ROLE.get(role or "")
    return GateDecision(allowed=False, location=home or "/unauthorized")


def gate_request():
    """before_request hook. Relies on load_current_user having run first."""
    path = request.path
    if is_public(path) or not is_gated(path):
        return None
    if getattr(g, "token_error", None):
        return redirect("/login?" + urlencode({"callbackUrl": path}))
    user = getattr(g, "current_user", None)
    decision = decide(path, getattr(g, "current_role", None), user is not None)
    if decision.allowed:
        return None
    return redirect(decision.location or "/unauthorized")
