from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, url_for

from app.marketplace.constants import ROLE_CLAIMS, ROLE_PRECEDENCE
from app.marketplace.models import User
from app.marketplace.responses import api_error


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def user_has_role(user: User | None, role_key: str) -> bool:
    return bool(user and role_key in user.role_keys)


def primary_role(user: User | None) -> str | None:
    """Highest-ranked role key held by the user (admin > moderator > freelancer > client)."""
    if not user:
        return None
    keys = user.role_keys
    for key in ROLE_PRECEDENCE:
        if key in keys:
            return key
    return None


def user_role_claim(user: User | None) -> str | None:
    key = primary_role(user)
    return ROLE_CLAIMS.get(key) if key else None


def _wants_json() -> bool:
    return request.path.startswith("/api/")


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            if _wants_json():
                return api_error("Authentication required.", 401)
            return redirect(url_for("auth.login_get", callbackUrl=request.path))
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated: JSON 401 for the API, login redirect for pages.
            if not user or not user.is_active:
                if _wants_json():
                    return api_error("Authentication required.", 401)
                nxt = request.full_path or request.path
                if nxt.endswith("?"):
                    nxt = nxt[:-1]
                return redirect(url_for("auth.login_get", callbackUrl=nxt))
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                if _wants_json():
                    return api_error("You do not have permission to perform this action.", 403)
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
