from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from flask import current_app
from werkzeug.security import check_password_hash, generate_password_hash

from app.marketplace.audit import record_event
from app.marketplace.constants import ROLE_CLIENT, ROLE_FREELANCER
from app.marketplace.errors import AuthenticationError, ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.marketplace.mailer import send_mail
from app.marketplace.models import EmailOtp, User
from app.marketplace.seed import get_role
from app.marketplace.utils import clean_str, normalize_email

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

OTP_PURPOSE_VERIFY = "verify_email"
OTP_PURPOSE_RESET = "reset_password"
MIN_PASSWORD_LENGTH = 8

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]{3,64}$")

REGISTERABLE_ROLES = {"CLIENT": ROLE_CLIENT, "FREELANCER": ROLE_FREELANCER}


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def validate_password(password: str | None) -> list[str]:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return [f"Password must be at least {MIN_PASSWORD_LENGTH} characters."]
    return []


def validate_registration_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    username = (payload.get("username") or "").strip()
    if not _USERNAME_RE.match(username):
        errors.append("Username must be 3-64 characters: letters, digits, '.', '_' or '-'.")
    if not (payload.get("fullName") or "").strip():
        errors.append("Full name is required.")
    if not is_valid_email(normalize_email(payload.get("email"))):
        errors.append("A valid email is required.")
    errors.extend(validate_password(payload.get("password")))
    role = (payload.get("role") or "CLIENT").strip().upper()
    if role not in REGISTERABLE_ROLES:
        errors.append("Role must be CLIENT or FREELANCER.")
    return errors


def find_user_by_email(s: "Session", email: str) -> User | None:
    return s.query(User).filter(User.email == normalize_email(email)).one_or_none()


def create_user(
    s: "Session",
    *,
    email: str,
    password: str,
    role_key: str,
    username: str | None = None,
    full_name: str | None = None,
    phone: str | None = None,
    is_active: bool = True,
    verified: bool = False,
) -> User:
    """
    Create a user holding a single role. Raises ConflictError on duplicate email/username.
    """
    email = normalize_email(email)
    if find_user_by_email(s, email):
        raise ConflictError("An account with this email already exists.")
    username = clean_str(username)
    if username and s.query(User).filter(User.username == username).one_or_none():
        raise ConflictError("This username is already taken.")

    now = datetime.utcnow()
    user = User(
        email=email,
        username=username,
        full_name=clean_str(full_name),
        phone=clean_str(phone),
        password_hash=generate_password_hash(password),
        is_active=is_active,
        email_verified_at=now if verified else None,
        created_at=now,
        updated_at=now,
    )
    user.roles.append(get_role(s, role_key))
    s.add(user)
    s.flush()
    return user


# ---------------------------------------------------------------------------
# One-time passcodes
# ---------------------------------------------------------------------------


def _generate_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def issue_otp(s: "Session", user: User, purpose: str) -> str:
    """
    Create a fresh 6-digit code for (user, purpose); earlier unused codes stop working.
    Returns the plain code (only ever sent by email).
    """
    now = datetime.utcnow()
    (
        s.query(EmailOtp)
        .filter(EmailOtp.user_id == user.id, EmailOtp.purpose == purpose, EmailOtp.consumed_at.is_(None))
        .update({EmailOtp.consumed_at: now}, synchronize_session=False)
    )
    code = _generate_code()
    ttl = int(current_app.config.get("OTP_TTL_MINUTES") or 10)
    s.add(
        EmailOtp(
            user_id=user.id,
            purpose=purpose,
            code_hash=generate_password_hash(code),
            attempts=0,
            expires_at=now + timedelta(minutes=ttl),
            created_at=now,
        )
    )
    s.flush()
    return code


def send_otp_email(user: User, code: str, purpose: str) -> None:
    ttl = int(current_app.config.get("OTP_TTL_MINUTES") or 10)
    if purpose == OTP_PURPOSE_RESET:
        subject = "Reset your password"
        lead = "Use this code to reset your password"
    else:
        subject = "Verify your email"
        lead = "Use this code to verify your email address"
    body = f"Hi {user.display_name},\n\n{lead}: {code}\n\nThe code expires in {ttl} minutes.\n"
    send_mail(user.email, subject, body)


def verify_otp(s: "Session", user: User, purpose: str, code: str) -> None:
    """
    Check a submitted code. Consumes the OTP on success; counts a failed attempt otherwise.
    """
    otp = (
        s.query(EmailOtp)
        .filter(EmailOtp.user_id == user.id, EmailOtp.purpose == purpose, EmailOtp.consumed_at.is_(None))
        .order_by(EmailOtp.created_at.desc(), EmailOtp.id.desc())
        .first()
    )
    if otp is None:
        raise ValidationError("No active code. Request a new one.")
    now = datetime.utcnow()
    if otp.expires_at < now:
        raise ValidationError("The code has expired. Request a new one.")
    max_attempts = int(current_app.config.get("OTP_MAX_ATTEMPTS") or 5)
    if otp.attempts >= max_attempts:
        raise ValidationError("Too many attempts. Request a new code.")
    if not check_password_hash(otp.code_hash, (code or "").strip()):
        otp.attempts += 1
        # Persist the attempt even though the caller will answer with an error.
        s.commit()
        raise ValidationError("Invalid code.")
    otp.consumed_at = now


# ---------------------------------------------------------------------------
# Registration & verification
# ---------------------------------------------------------------------------


def register(s: "Session", payload: dict) -> User:
    errors = validate_registration_payload(payload)
    if errors:
        raise ValidationError("; ".join(errors), data={"errors": errors})

    role_key = REGISTERABLE_ROLES[(payload.get("role") or "CLIENT").strip().upper()]
    user = create_user(
        s,
        email=payload.get("email") or "",
        password=payload.get("password") or "",
        role_key=role_key,
        username=payload.get("username"),
        full_name=payload.get("fullName"),
        phone=payload.get("phone"),
        # Freelancer accounts stay inactive until staff accept the registration.
        is_active=role_key != ROLE_FREELANCER,
    )
    if role_key == ROLE_FREELANCER:
        from app.marketplace.modules.freelancers.service import create_pending_profile

        create_pending_profile(s, user, payload)

    code = issue_otp(s, user, OTP_PURPOSE_VERIFY)
    record_event(s, actor=user, action="account.register", entity_type="User", entity_id=str(user.id), metadata={"role": role_key})
    send_otp_email(user, code, OTP_PURPOSE_VERIFY)
    logger.info("Registered user id=%s role=%s", user.id, role_key)
    return user


def resend_verification(s: "Session", email: str) -> User:
    user = find_user_by_email(s, email)
    if user is None:
        raise NotFoundError("No account with this email.")
    if user.email_verified_at is not None:
        raise ValidationError("Email is already verified.")
    code = issue_otp(s, user, OTP_PURPOSE_VERIFY)
    send_otp_email(user, code, OTP_PURPOSE_VERIFY)
    return user


def verify_email(s: "Session", email: str, code: str) -> User:
    """
    Mark the account's email verified. Client accounts then pick up their onboarding visitor.
    """
    user = find_user_by_email(s, email)
    if user is None:
        raise NotFoundError("No account with this email.")
    if user.email_verified_at is not None:
        raise ValidationError("Email is already verified.")
    verify_otp(s, user, OTP_PURPOSE_VERIFY, code)
    user.email_verified_at = datetime.utcnow()
    user.updated_at = user.email_verified_at
    record_event(s, actor=user, action="account.verify_email", entity_type="User", entity_id=str(user.id))

    if ROLE_CLIENT in user.role_keys:
        from app.marketplace.modules.visitors.service import convert_visitor_for_client

        convert_visitor_for_client(s, user)
    return user


# ---------------------------------------------------------------------------
# Login & passwords
# ---------------------------------------------------------------------------


def authenticate(s: "Session", email: str, password: str) -> User:
    user = find_user_by_email(s, email)
    if not user or not check_password_hash(user.password_hash, password or ""):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=normalize_email(email),
            reason="Invalid credentials",
        )
        s.commit()
        raise AuthenticationError("Invalid email or password.")
    if user.email_verified_at is None:
        raise ForbiddenError("Email is not verified.")
    if not user.is_active:
        raise ForbiddenError("Account is not active.")
    user.last_login_at = datetime.utcnow()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    return user


def change_password(s: "Session", user: User, current_password: str, new_password: str) -> None:
    if not check_password_hash(user.password_hash, current_password or ""):
        raise ValidationError("Current password is incorrect.")
    errors = validate_password(new_password)
    if errors:
        raise ValidationError(errors[0])
    if current_password == new_password:
        raise ValidationError("New password must differ from the current one.")
    user.password_hash = generate_password_hash(new_password)
    user.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="account.change_password", entity_type="User", entity_id=str(user.id))


def request_password_reset(s: "Session", email: str) -> None:
    """Sends a reset code when the account exists. Silent otherwise."""
    user = find_user_by_email(s, email)
    if user is None:
        logger.info("Password reset requested for unknown email")
        return
    code = issue_otp(s, user, OTP_PURPOSE_RESET)
    record_event(s, actor=user, action="account.reset_requested", entity_type="User", entity_id=str(user.id))
    send_otp_email(user, code, OTP_PURPOSE_RESET)


def reset_password(s: "Session", email: str, code: str, new_password: str) -> User:
    errors = validate_password(new_password)
    if errors:
        raise ValidationError(errors[0])
    user = find_user_by_email(s, email)
    if user is None:
        raise ValidationError("Invalid code.")
    verify_otp(s, user, OTP_PURPOSE_RESET, code)
    user.password_hash = generate_password_hash(new_password)
    user.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="account.reset_password", entity_type="User", entity_id=str(user.id))
    return user


def user_summary(user: User) -> dict:
    from app.marketplace.rbac import user_role_claim

    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "fullName": user.full_name,
        "phone": user.phone,
        "role": user_role_claim(user),
        "isActive": user.is_active,
        "emailVerified": user.email_verified_at is not None,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }
