from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_

from app.marketplace.audit import record_event
from app.marketplace.constants import (
    DIFFICULTY_LEVELS,
    MILESTONE_PRIORITIES,
    MILESTONE_STATUSES,
    PROJECT_STATUSES,
    ROLE_ADMIN,
    ROLE_CLIENT,
    ROLE_FREELANCER,
    ROLE_MODERATOR,
)
from app.marketplace.errors import ForbiddenError, NotFoundError, ValidationError
from app.marketplace.modules.projects.models import Milestone, Project, ProjectFeedback, ProjectFreelancer
from app.marketplace.utils import clean_str, iso, money, money_json, parse_datetime, parse_int, to_decimal

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.marketplace.models import User


# ---------------------------------------------------------------------------
# Milestone rules
# ---------------------------------------------------------------------------


def clamp_progress(value: Any) -> int:
    try:
        d = to_decimal(value, field="progress")
    except ValueError:
        raise ValidationError("progress must be a number between 0 and 100.")
    if d >= 100:
        return 100
    if d <= 0:
        return 0
    return int(d.to_integral_value(rounding=ROUND_HALF_UP))


def apply_milestone_state(m: Milestone, *, status: str | None = None, progress: int | None = None, now: datetime | None = None) -> None:
    """
    Keep status, progress and timestamps consistent:
    COMPLETED <=> progress 100, IN_PROGRESS stamps started_at once, completion stamps completed_at.
    """
    now = now or datetime.utcnow()
    if progress is not None:
        m.progress = clamp_progress(progress)
    if status is not None:
        if status not in MILESTONE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(MILESTONE_STATUSES)}")
        m.status = status
        if status != "COMPLETED" and m.progress >= 100 and progress is None:
            # Re-opening a finished milestone.
            m.progress = 99

    if m.status == "COMPLETED":
        m.progress = 100
    elif m.progress >= 100:
        m.status = "COMPLETED"
    elif m.progress > 0 and m.status == "PLANNED":
        m.status = "IN_PROGRESS"

    if m.status in ("IN_PROGRESS", "COMPLETED") and m.started_at is None:
        m.started_at = now
    if m.status == "COMPLETED":
        if m.completed_at is None:
            m.completed_at = now
        m.is_milestone_completed = True
    else:
        m.completed_at = None
        m.is_milestone_completed = False


def is_milestone_overdue(m: Milestone, now: datetime | None = None) -> bool:
    now = now or datetime.utcnow()
    return m.deadline is not None and m.deadline < now and m.status != "COMPLETED"


def project_progress(milestones: list[Milestone]) -> int:
    """Percentage of completed milestones, rounded; 0 for a project without milestones."""
    total = len(milestones)
    if total == 0:
        return 0
    done = sum(1 for m in milestones if m.status == "COMPLETED")
    return int(Decimal(done * 100) / Decimal(total) + Decimal("0.5"))


def is_project_complete(milestones: list[Milestone]) -> bool:
    return bool(milestones) and all(m.status == "COMPLETED" for m in milestones)


def _sync_project_completion(s: "Session", project: Project, actor: "User | None") -> None:
    if project.status == "COMPLETED" or project.status == "CANCELLED":
        return
    if is_project_complete(project.milestones):
        project.status = "COMPLETED"
        project.completed_at = datetime.utcnow()
        project.updated_at = project.completed_at
        record_event(s, actor=actor, action="project.complete", entity_type="Project", entity_id=str(project.id))


# ---------------------------------------------------------------------------
# Access
# ---------------------------------------------------------------------------


def get_project(s: "Session", project_id: int) -> Project:
    p = s.get(Project, project_id)
    if p is None:
        raise NotFoundError("Project not found.")
    return p


def is_staff(user: "User | None") -> bool:
    return bool(user and user.role_keys & {ROLE_ADMIN, ROLE_MODERATOR})


def is_owner(user: "User | None", project: Project) -> bool:
    return bool(user and project.client_id == user.id)


def is_selected_freelancer(user: "User | None", project: Project) -> bool:
    return bool(user and any(f.id == user.id for f in project.selected_freelancers))


def can_view_project(user: "User | None", project: Project) -> bool:
    return is_staff(user) or is_owner(user, project) or is_selected_freelancer(user, project)


def require_project_access(s: "Session", project_id: int, user: "User") -> Project:
    p = get_project(s, project_id)
    if not can_view_project(user, p):
        raise ForbiddenError("You do not have access to this project.")
    return p


# ---------------------------------------------------------------------------
# Listing / KPIs
# ---------------------------------------------------------------------------


def client_projects(s: "Session", client: "User") -> list[Project]:
    return s.query(Project).filter(Project.client_id == client.id).order_by(Project.created_at.desc(), Project.id.desc()).all()


def freelancer_projects(s: "Session", freelancer: "User") -> list[Project]:
    return (
        s.query(Project)
        .join(ProjectFreelancer, ProjectFreelancer.project_id == Project.id)
        .filter(ProjectFreelancer.user_id == freelancer.id)
        .order_by(Project.created_at.desc(), Project.id.desc())
        .all()
    )


def open_projects(s: "Session") -> list[Project]:
    return (
        s.query(Project)
        .filter(Project.accepting_bids.is_(True), Project.status.in_(("PENDING", "ONGOING")))
        .order_by(Project.created_at.desc(), Project.id.desc())
        .all()
    )


def client_kpis(projects: list[Project]) -> dict[str, int]:
    return {
        "totalProjects": len(projects),
        "completedProjects": sum(1 for p in projects if p.status == "COMPLETED"),
        "pendingProjects": sum(1 for p in projects if p.status == "PENDING"),
    }


def list_projects(
    s: "Session",
    *,
    status: str = "",
    accepting_bids: bool | None = None,
    search: str = "",
    page: int = 1,
    per_page: int = 10,
) -> tuple[list[Project], int]:
    q = s.query(Project)
    if status:
        if status not in PROJECT_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(PROJECT_STATUSES)}")
        q = q.filter(Project.status == status)
    if accepting_bids is not None:
        q = q.filter(Project.accepting_bids.is_(accepting_bids))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Project.title.ilike(like), Project.niche.ilike(like)))
    total = q.count()
    rows = q.order_by(Project.created_at.desc(), Project.id.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return rows, total


# ---------------------------------------------------------------------------
# Project updates
# ---------------------------------------------------------------------------


def update_discord_url(s: "Session", project: Project, url: Any, user: "User") -> Project:
    value = clean_str(url)
    if value and not value.startswith(("https://", "http://")):
        raise ValidationError("discordChatUrl must be an http(s) URL.")
    old = project.discord_chat_url
    project.discord_chat_url = value
    project.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="project.discord_url",
        entity_type="Project",
        entity_id=str(project.id),
        metadata={"old": old, "new": value},
    )
    return project


_PROJECT_FIELDS = {
    "title": "title",
    "detail": "detail",
    "niche": "niche",
    "projectType": "project_type",
}


def admin_update_project(s: "Session", project: Project, payload: dict, user: "User") -> Project:
    changes: dict[str, dict[str, Any]] = {}

    def _set(key: str, attr: str, value: Any) -> None:
        old = getattr(project, attr)
        if old != value:
            changes[key] = {"old": str(old) if old is not None else None, "new": str(value) if value is not None else None}
            setattr(project, attr, value)

    for key, attr in _PROJECT_FIELDS.items():
        if key in payload:
            value = clean_str(payload.get(key))
            if key == "title" and not value:
                raise ValidationError("title cannot be empty.")
            _set(key, attr, value)
    if "status" in payload:
        status = (payload.get("status") or "").strip().upper()
        if status not in PROJECT_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(PROJECT_STATUSES)}")
        _set("status", "status", status)
        if status == "COMPLETED" and project.completed_at is None:
            project.completed_at = datetime.utcnow()
    if "difficultyLevel" in payload:
        level = (payload.get("difficultyLevel") or "").strip().upper()
        if level not in DIFFICULTY_LEVELS:
            raise ValidationError(f"difficultyLevel must be one of: {', '.join(DIFFICULTY_LEVELS)}")
        _set("difficultyLevel", "difficulty_level", level)
    if "acceptingBids" in payload:
        _set("acceptingBids", "accepting_bids", bool(payload.get("acceptingBids")))
    if "deadline" in payload:
        try:
            _set("deadline", "deadline", parse_datetime(payload.get("deadline"), field="deadline"))
        except ValueError as e:
            raise ValidationError(str(e))
    if "totalAmount" in payload:
        try:
            amount = money(to_decimal(payload.get("totalAmount"), field="totalAmount"))
        except ValueError as e:
            raise ValidationError(str(e))
        if amount < 0:
            raise ValidationError("totalAmount must be zero or greater.")
        _set("totalAmount", "total_amount", amount)
    if "discordChatUrl" in payload:
        _set("discordChatUrl", "discord_chat_url", clean_str(payload.get("discordChatUrl")))

    if changes:
        project.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="project.update", entity_type="Project", entity_id=str(project.id), metadata={"changes": changes})
    return project


def add_freelancer(s: "Session", project: Project, freelancer: "User") -> bool:
    """Select a freelancer for a project. Returns False when already selected."""
    if is_selected_freelancer(freelancer, project):
        return False
    project.selected_freelancers.append(freelancer)
    project.updated_at = datetime.utcnow()
    return True


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------


def _parse_hours(value: Any, field: str) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        hours = to_decimal(value, field=field)
    except ValueError as e:
        raise ValidationError(str(e))
    if hours < 0:
        raise ValidationError(f"{field} must be zero or greater.")
    return hours.quantize(Decimal("0.01"))


def _resolve_assignee(s: "Session", project: Project, raw: Any) -> int | None:
    from app.marketplace.models import User

    if raw in (None, ""):
        return None
    try:
        uid = parse_int(raw, field="assignedFreelancerId", minimum=1)
    except ValueError as e:
        raise ValidationError(str(e))
    user = s.get(User, uid)
    if user is None or ROLE_FREELANCER not in user.role_keys:
        raise ValidationError("assignedFreelancerId must reference a freelancer.")
    if not is_selected_freelancer(user, project):
        raise ValidationError("The freelancer is not selected for this project.")
    return uid


def create_milestone(s: "Session", project: Project, payload: dict, user: "User") -> Milestone:
    name = clean_str(payload.get("name"))
    if not name:
        raise ValidationError("name is required.")
    priority = (payload.get("priority") or "MEDIUM").strip().upper()
    if priority not in MILESTONE_PRIORITIES:
        raise ValidationError(f"priority must be one of: {', '.join(MILESTONE_PRIORITIES)}")
    try:
        deadline = parse_datetime(payload.get("deadline"), field="deadline")
    except ValueError as e:
        raise ValidationError(str(e))

    now = datetime.utcnow()
    m = Milestone(
        project_id=project.id,
        name=name,
        description=clean_str(payload.get("description")),
        deadline=deadline,
        priority=priority,
        progress=0,
        status="PLANNED",
        estimated_hours=_parse_hours(payload.get("estimatedHours"), "estimatedHours"),
        assigned_freelancer_id=_resolve_assignee(s, project, payload.get("assignedFreelancerId")),
        created_at=now,
        updated_at=now,
    )
    apply_milestone_state(
        m,
        status=(payload.get("status") or "").strip().upper() or None,
        progress=payload.get("progress"),
        now=now,
    )
    project.milestones.append(m)
    s.flush()
    # A new open milestone re-opens nothing; a pre-completed one may finish the project.
    _sync_project_completion(s, project, user)
    record_event(
        s,
        actor=user,
        action="milestone.create",
        entity_type="Milestone",
        entity_id=str(m.id),
        metadata={"project_id": project.id, "name": name},
    )
    return m


FREELANCER_MILESTONE_FIELDS = {"progress", "status", "actualHours", "deliverableUrl"}


def get_milestone(project: Project, milestone_id: int) -> Milestone:
    for m in project.milestones:
        if m.id == milestone_id:
            return m
    raise NotFoundError("Milestone not found.")


def update_milestone(s: "Session", project: Project, milestone: Milestone, payload: dict, user: "User") -> Milestone:
    """
    Staff may edit every field. The assigned freelancer may only report progress,
    status, actual hours and the deliverable link.
    """
    staff = is_staff(user)
    if not staff:
        if milestone.assigned_freelancer_id != user.id and not (
            milestone.assigned_freelancer_id is None and is_selected_freelancer(user, project)
        ):
            raise ForbiddenError("Only the assigned freelancer can update this milestone.")
        extra = set(payload) - FREELANCER_MILESTONE_FIELDS
        if extra:
            raise ForbiddenError(f"Freelancers cannot change: {', '.join(sorted(extra))}")

    before = {"status": milestone.status, "progress": milestone.progress}
    if staff:
        if "name" in payload:
            name = clean_str(payload.get("name"))
            if not name:
                raise ValidationError("name cannot be empty.")
            milestone.name = name
        if "description" in payload:
            milestone.description = clean_str(payload.get("description"))
        if "deadline" in payload:
            try:
                milestone.deadline = parse_datetime(payload.get("deadline"), field="deadline")
            except ValueError as e:
                raise ValidationError(str(e))
        if "priority" in payload:
            priority = (payload.get("priority") or "").strip().upper()
            if priority not in MILESTONE_PRIORITIES:
                raise ValidationError(f"priority must be one of: {', '.join(MILESTONE_PRIORITIES)}")
            milestone.priority = priority
        if "estimatedHours" in payload:
            milestone.estimated_hours = _parse_hours(payload.get("estimatedHours"), "estimatedHours")
        if "assignedFreelancerId" in payload:
            milestone.assigned_freelancer_id = _resolve_assignee(s, project, payload.get("assignedFreelancerId"))

    if "actualHours" in payload:
        milestone.actual_hours = _parse_hours(payload.get("actualHours"), "actualHours")
    if "deliverableUrl" in payload:
        url = clean_str(payload.get("deliverableUrl"))
        if url and not url.startswith(("https://", "http://")):
            raise ValidationError("deliverableUrl must be an http(s) URL.")
        milestone.deliverable_url = url

    status = (payload.get("status") or "").strip().upper() or None
    progress = payload.get("progress")
    apply_milestone_state(milestone, status=status, progress=progress)
    milestone.updated_at = datetime.utcnow()

    if project.status == "PENDING" and milestone.status in ("IN_PROGRESS", "COMPLETED"):
        project.status = "ONGOING"
    _sync_project_completion(s, project, user)

    record_event(
        s,
        actor=user,
        action="milestone.update",
        entity_type="Milestone",
        entity_id=str(milestone.id),
        metadata={
            "project_id": project.id,
            "before": before,
            "after": {"status": milestone.status, "progress": milestone.progress},
        },
    )
    return milestone


# ---------------------------------------------------------------------------
# Feedback
# ---------------------------------------------------------------------------


def submit_feedback(s: "Session", payload: dict, client: "User") -> ProjectFeedback:
    try:
        project_id = parse_int(payload.get("projectId"), field="projectId", minimum=1)
        rating = parse_int(payload.get("rating"), field="rating", minimum=1, maximum=5)
    except ValueError as e:
        raise ValidationError(str(e))
    project = get_project(s, project_id)
    if not is_owner(client, project) or ROLE_CLIENT not in client.role_keys:
        raise ForbiddenError("Only the project's client can leave feedback.")
    fb = ProjectFeedback(
        project_id=project.id,
        client_id=client.id,
        rating=rating,
        comment=clean_str(payload.get("comment")),
        created_at=datetime.utcnow(),
    )
    s.add(fb)
    s.flush()
    record_event(s, actor=client, action="project.feedback", entity_type="Project", entity_id=str(project.id), metadata={"rating": rating})
    return fb


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _user_brief(u: "User | None") -> dict | None:
    if u is None:
        return None
    return {"id": u.id, "fullName": u.full_name, "username": u.username, "email": u.email}


def serialize_milestone(m: Milestone, now: datetime | None = None) -> dict:
    return {
        "id": m.id,
        "projectId": m.project_id,
        "name": m.name,
        "description": m.description,
        "deadline": iso(m.deadline),
        "progress": m.progress,
        "status": m.status,
        "priority": m.priority,
        "estimatedHours": float(m.estimated_hours) if m.estimated_hours is not None else None,
        "actualHours": float(m.actual_hours) if m.actual_hours is not None else None,
        "deliverableUrl": m.deliverable_url,
        "assignedFreelancer": _user_brief(m.assigned_freelancer),
        "isMilestoneCompleted": m.is_milestone_completed,
        "isOverdue": is_milestone_overdue(m, now),
        "startedAt": iso(m.started_at),
        "completedAt": iso(m.completed_at),
    }


def serialize_project(p: Project, *, with_milestones: bool = False) -> dict:
    out = {
        "id": p.id,
        "title": p.title,
        "detail": p.detail,
        "niche": p.niche,
        "difficultyLevel": p.difficulty_level,
        "projectType": p.project_type,
        "status": p.status,
        "deadline": iso(p.deadline),
        "totalAmount": money_json(p.total_amount),
        "estimateMin": money_json(p.estimate_min),
        "estimateMax": money_json(p.estimate_max),
        "acceptingBids": p.accepting_bids,
        "discordChatUrl": p.discord_chat_url,
        "client": _user_brief(p.client),
        "moderator": _user_brief(p.moderator),
        "selectedFreelancers": [_user_brief(f) for f in p.selected_freelancers],
        "progress": project_progress(p.milestones),
        "milestoneCount": len(p.milestones),
        "completedMilestones": sum(1 for m in p.milestones if m.status == "COMPLETED"),
        "hasClientBrief": p.brief is not None,
        "createdAt": iso(p.created_at),
        "completedAt": iso(p.completed_at),
    }
    if with_milestones:
        out["milestones"] = [serialize_milestone(m) for m in p.milestones]
    return out
