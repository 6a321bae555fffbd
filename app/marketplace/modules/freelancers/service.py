from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_

from app.marketplace.audit import record_event
from app.marketplace.constants import ROLE_FREELANCER
from app.marketplace.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.marketplace.mailer import MailError, send_mail
from app.marketplace.models import User
from app.marketplace.modules.freelancers.models import FreelancerProfile
from app.marketplace.utils import clean_str, iso, parse_int, string_list

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_PROFILE_FIELDS = ("niche", "yearsOfExperience", "kpiRank", "skills", "portfolioUrl", "bio")


def _apply_profile_fields(profile: FreelancerProfile, payload: dict, *, allow_rank: bool) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    if "niche" in payload:
        profile.niche = clean_str(payload.get("niche"))
        changes["niche"] = profile.niche
    if "yearsOfExperience" in payload:
        raw = payload.get("yearsOfExperience")
        try:
            profile.years_of_experience = None if raw in (None, "") else parse_int(raw, field="yearsOfExperience", minimum=0, maximum=80)
        except ValueError as e:
            raise ValidationError(str(e))
        changes["yearsOfExperience"] = profile.years_of_experience
    if "skills" in payload:
        try:
            profile.skills = string_list(payload.get("skills"), field="skills")
        except ValueError as e:
            raise ValidationError(str(e))
        changes["skills"] = profile.skills
    if "portfolioUrl" in payload:
        url = clean_str(payload.get("portfolioUrl"))
        if url and not url.startswith(("https://", "http://")):
            raise ValidationError("portfolioUrl must be an http(s) URL.")
        profile.portfolio_url = url
        changes["portfolioUrl"] = url
    if "bio" in payload:
        profile.bio = clean_str(payload.get("bio"))
        changes["bio"] = "(updated)"
    if "kpiRank" in payload:
        if not allow_rank:
            raise ForbiddenError("kpiRank is set by staff.")
        profile.kpi_rank = clean_str(payload.get("kpiRank"))
        changes["kpiRank"] = profile.kpi_rank
    return changes


def create_pending_profile(s: "Session", user: User, payload: dict) -> FreelancerProfile:
    now = datetime.utcnow()
    profile = FreelancerProfile(user_id=user.id, status="PENDING", created_at=now, updated_at=now)
    profile.user = user
    _apply_profile_fields(profile, payload, allow_rank=False)
    s.add(profile)
    s.flush()
    return profile


def get_profile(s: "Session", profile_id: int) -> FreelancerProfile:
    p = s.get(FreelancerProfile, profile_id)
    if p is None:
        raise NotFoundError("Freelancer not found.")
    return p


def profile_for_user(s: "Session", user: User) -> FreelancerProfile | None:
    return s.query(FreelancerProfile).filter(FreelancerProfile.user_id == user.id).one_or_none()


def require_accepted_profile(s: "Session", user: User) -> FreelancerProfile:
    profile = profile_for_user(s, user)
    if profile is None or profile.status != "ACCEPTED":
        raise ForbiddenError("Your freelancer profile has not been accepted yet.")
    return profile


def list_profiles(
    s: "Session",
    *,
    status: str | None = None,
    search: str = "",
    page: int = 1,
    per_page: int = 10,
) -> tuple[list[FreelancerProfile], int]:
    q = s.query(FreelancerProfile).join(User, User.id == FreelancerProfile.user_id)
    if status:
        q = q.filter(FreelancerProfile.status == status)
    if search:
        like = f"%{search.strip().lower()}%"
        q = q.filter(
            or_(
                func.lower(User.full_name).like(like),
                func.lower(User.email).like(like),
                func.lower(User.username).like(like),
                func.lower(FreelancerProfile.niche).like(like),
            )
        )
    total = q.count()
    rows = (
        q.order_by(FreelancerProfile.created_at.desc(), FreelancerProfile.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return rows, total


def accept_request(s: "Session", profile_id: int, actor: User) -> FreelancerProfile:
    profile = get_profile(s, profile_id)
    if profile.status == "ACCEPTED":
        raise ConflictError("This freelancer has already been accepted.")
    now = datetime.utcnow()
    old = profile.status
    profile.status = "ACCEPTED"
    profile.accepted_at = now
    profile.trashed_at = None
    profile.updated_at = now
    profile.user.is_active = True
    profile.user.updated_at = now
    record_event(
        s,
        actor=actor,
        action="freelancer.accept",
        entity_type="FreelancerProfile",
        entity_id=str(profile.id),
        metadata={"old_status": old, "user_id": profile.user_id},
    )
    try:
        send_mail(
            profile.user.email,
            "Your freelancer application was accepted",
            f"Hi {profile.user.display_name},\n\nYour freelancer account is now active. You can log in and start bidding on projects.\n",
        )
    except MailError:
        # Acceptance stands; the failure is already logged by send_mail.
        logger.warning("Acceptance email not delivered (profile id=%s)", profile.id)
    return profile


def trash_request(s: "Session", profile_id: int, actor: User, reason: str | None = None) -> FreelancerProfile:
    profile = get_profile(s, profile_id)
    if profile.status == "TRASHED":
        raise ConflictError("This request is already trashed.")
    now = datetime.utcnow()
    old = profile.status
    profile.status = "TRASHED"
    profile.trashed_at = now
    profile.updated_at = now
    profile.user.is_active = False
    profile.user.updated_at = now
    record_event(
        s,
        actor=actor,
        action="freelancer.trash",
        entity_type="FreelancerProfile",
        entity_id=str(profile.id),
        reason=reason,
        metadata={"old_status": old, "user_id": profile.user_id},
    )
    return profile


def admin_create_freelancer(s: "Session", payload: dict, actor: User) -> FreelancerProfile:
    from app.marketplace.modules.accounts.service import create_user, is_valid_email, validate_password

    errors: list[str] = []
    if not clean_str(payload.get("fullName")):
        errors.append("fullName is required.")
    if not is_valid_email((payload.get("email") or "").strip().lower()):
        errors.append("A valid email is required.")
    errors.extend(validate_password(payload.get("password")))
    if errors:
        raise ValidationError("; ".join(errors), data={"errors": errors})

    user = create_user(
        s,
        email=payload.get("email") or "",
        password=payload.get("password") or "",
        role_key=ROLE_FREELANCER,
        username=payload.get("username"),
        full_name=payload.get("fullName"),
        phone=payload.get("phone"),
        is_active=True,
        verified=True,
    )
    now = datetime.utcnow()
    profile = FreelancerProfile(user_id=user.id, status="ACCEPTED", accepted_at=now, created_at=now, updated_at=now)
    profile.user = user
    _apply_profile_fields(profile, payload, allow_rank=True)
    s.add(profile)
    s.flush()
    record_event(s, actor=actor, action="freelancer.create", entity_type="FreelancerProfile", entity_id=str(profile.id))
    return profile


def admin_update_freelancer(s: "Session", profile_id: int, payload: dict, actor: User) -> FreelancerProfile:
    profile = get_profile(s, profile_id)
    changes = _apply_profile_fields(profile, payload, allow_rank=True)
    if "fullName" in payload:
        name = clean_str(payload.get("fullName"))
        if not name:
            raise ValidationError("fullName cannot be empty.")
        profile.user.full_name = name
        changes["fullName"] = name
    if changes:
        profile.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=actor,
            action="freelancer.update",
            entity_type="FreelancerProfile",
            entity_id=str(profile.id),
            metadata={"changes": changes},
        )
    return profile


def update_own_profile(s: "Session", user: User, payload: dict) -> FreelancerProfile:
    profile = profile_for_user(s, user)
    if profile is None:
        raise NotFoundError("No freelancer profile for this account.")
    changes = _apply_profile_fields(profile, payload, allow_rank=False)
    if "fullName" in payload:
        name = clean_str(payload.get("fullName"))
        if not name:
            raise ValidationError("fullName cannot be empty.")
        user.full_name = name
        changes["fullName"] = name
    if changes:
        profile.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="freelancer.profile_update", entity_type="FreelancerProfile", entity_id=str(profile.id))
    return profile


def serialize_profile(p: FreelancerProfile) -> dict:
    u = p.user
    return {
        "id": p.id,
        "userId": p.user_id,
        "fullName": u.full_name if u else None,
        "username": u.username if u else None,
        "email": u.email if u else None,
        "niche": p.niche,
        "yearsOfExperience": p.years_of_experience,
        "kpiRank": p.kpi_rank,
        "skills": p.skills or [],
        "portfolioUrl": p.portfolio_url,
        "bio": p.bio,
        "status": p.status,
        "isAccepted": p.status == "ACCEPTED",
        "acceptedAt": iso(p.accepted_at),
        "trashedAt": iso(p.trashed_at),
        "createdAt": iso(p.created_at),
    }
