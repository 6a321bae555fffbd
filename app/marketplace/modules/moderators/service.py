from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_

from app.marketplace.audit import record_event
from app.marketplace.constants import ROLE_MODERATOR
from app.marketplace.errors import NotFoundError, ValidationError
from app.marketplace.models import Role, User
from app.marketplace.modules.projects.models import Project
from app.marketplace.utils import clean_str, iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session


def _moderators(s: "Session") -> "Query":
    return s.query(User).join(User.roles).filter(Role.key == ROLE_MODERATOR)


def get_moderator(s: "Session", user_id: int) -> User:
    user = s.get(User, user_id)
    if user is None or ROLE_MODERATOR not in user.role_keys:
        raise NotFoundError("Moderator not found.")
    return user


def list_moderators(
    s: "Session",
    *,
    include_inactive: bool = False,
    search: str = "",
    page: int = 1,
    per_page: int = 10,
) -> tuple[list[User], int]:
    q = _moderators(s)
    if not include_inactive:
        q = q.filter(User.is_active.is_(True))
    if search:
        like = f"%{search.strip().lower()}%"
        q = q.filter(
            or_(
                func.lower(User.full_name).like(like),
                func.lower(User.email).like(like),
                func.lower(User.username).like(like),
            )
        )
    total = q.count()
    rows = q.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return rows, total


def create_moderator(s: "Session", payload: dict, actor: User) -> User:
    from app.marketplace.modules.accounts.service import create_user, is_valid_email, validate_password

    errors: list[str] = []
    if not clean_str(payload.get("username")):
        errors.append("username is required.")
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
        role_key=ROLE_MODERATOR,
        username=payload.get("username"),
        full_name=payload.get("fullName"),
        phone=payload.get("phone"),
        is_active=True,
        verified=True,
    )
    record_event(s, actor=actor, action="moderator.create", entity_type="User", entity_id=str(user.id), metadata={"email": user.email})
    return user


def moderated_projects(s: "Session", moderator: User) -> list[Project]:
    return s.query(Project).filter(Project.moderator_id == moderator.id).order_by(Project.created_at.desc()).all()


def set_active(s: "Session", moderator: User, is_active: bool, actor: User) -> User:
    if moderator.id == actor.id and not is_active:
        raise ValidationError("You cannot deactivate your own account.")
    if moderator.is_active != is_active:
        moderator.is_active = is_active
        moderator.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=actor,
            action="moderator.activate" if is_active else "moderator.deactivate",
            entity_type="User",
            entity_id=str(moderator.id),
        )
    return moderator


def delete_moderator(s: "Session", moderator: User, actor: User) -> int:
    """Deactivate the account and release its projects. Returns the number of projects unassigned."""
    set_active(s, moderator, False, actor)
    projects = moderated_projects(s, moderator)
    for p in projects:
        p.moderator_id = None
        p.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="moderator.delete",
        entity_type="User",
        entity_id=str(moderator.id),
        metadata={"unassigned_projects": [p.id for p in projects]},
    )
    return len(projects)


def assign_project(s: "Session", moderator: User, project: Project, actor: User) -> Project:
    if not moderator.is_active:
        raise ValidationError("Inactive moderators cannot be assigned.")
    old = project.moderator_id
    project.moderator_id = moderator.id
    project.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="moderator.assign",
        entity_type="Project",
        entity_id=str(project.id),
        metadata={"old_moderator_id": old, "moderator_id": moderator.id},
    )
    return project


def unassign_project(s: "Session", project: Project, actor: User) -> Project:
    if project.moderator_id is None:
        raise ValidationError("The project has no moderator.")
    old = project.moderator_id
    project.moderator_id = None
    project.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="moderator.unassign",
        entity_type="Project",
        entity_id=str(project.id),
        metadata={"old_moderator_id": old},
    )
    return project


def moderator_stats(s: "Session") -> dict:
    total = _moderators(s).count()
    active = _moderators(s).filter(User.is_active.is_(True)).count()
    moderated = s.query(func.count(Project.id)).filter(Project.moderator_id.isnot(None)).scalar() or 0
    return {"total": total, "active": active, "inactive": total - active, "projectsModerated": int(moderated)}


def serialize_moderator(u: User, *, projects: list[Project] | None = None) -> dict:
    out = {
        "id": u.id,
        "username": u.username,
        "fullName": u.full_name,
        "email": u.email,
        "phone": u.phone,
        "isActive": u.is_active,
        "lastLoginAt": iso(u.last_login_at),
        "createdAt": iso(u.created_at),
    }
    if projects is not None:
        out["projects"] = [{"id": p.id, "title": p.title, "status": p.status} for p in projects]
    return out
