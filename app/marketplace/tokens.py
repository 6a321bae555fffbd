"""
Bearer access tokens (HS256 JWT) for the JSON API.

Claims: sub (user id as string), email, role (ADMIN/MODERATOR/FREELANCER/CLIENT), iat, exp.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from flask import current_app

from app.marketplace.models import User
from app.marketplace.rbac import user_role_claim


class TokenError(ValueError):
    pass


def issue_access_token(user: User, *, now: datetime | None = None) -> str:
    cfg = current_app.config
    issued = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user_role_claim(user),
        "iat": issued,
        "exp": issued + timedelta(minutes=int(cfg.get("ACCESS_TOKEN_TTL_MINUTES") or 60)),
    }
    return jwt.encode(payload, cfg["JWT_SECRET"], algorithm=cfg.get("JWT_ALGORITHM") or "HS256")


def decode_access_token(token: str) -> dict[str, Any]:
    cfg = current_app.config
    try:
        claims = jwt.decode(
            token,
            cfg["JWT_SECRET"],
            algorithms=[cfg.get("JWT_ALGORITHM") or "HS256"],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise TokenError("Invalid token") from e
    return claims
