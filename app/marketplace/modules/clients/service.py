from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func, or_

from app.marketplace.constants import ROLE_CLIENT
from app.marketplace.errors import NotFoundError
from app.marketplace.models import Role, User
from app.marketplace.modules.payments.service import client_payments, client_total_spent, serialize_payment
from app.marketplace.modules.projects.service import client_kpis, client_projects, serialize_project
from app.marketplace.modules.visitors.models import Visitor
from app.marketplace.modules.visitors.service import serialize_visitor
from app.marketplace.utils import iso, money_json

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def get_client(s: "Session", user_id: int) -> User:
    user = s.get(User, user_id)
    if user is None or ROLE_CLIENT not in user.role_keys:
        raise NotFoundError("Client not found.")
    return user


def list_clients(s: "Session", *, search: str = "", page: int = 1, per_page: int = 10) -> tuple[list[User], int]:
    q = s.query(User).join(User.roles).filter(Role.key == ROLE_CLIENT)
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


def linked_visitor(s: "Session", client: User) -> Visitor | None:
    return (
        s.query(Visitor)
        .filter(Visitor.client_id == client.id)
        .order_by(Visitor.converted_at.desc(), Visitor.id.desc())
        .first()
    )


def serialize_client(s: "Session", u: User) -> dict:
    return {
        "id": u.id,
        "username": u.username,
        "fullName": u.full_name,
        "email": u.email,
        "phone": u.phone,
        "isActive": u.is_active,
        "emailVerified": u.email_verified_at is not None,
        "totalSpent": money_json(client_total_spent(s, u.id)),
        "createdAt": iso(u.created_at),
    }


def client_detail(s: "Session", u: User) -> dict:
    projects = client_projects(s, u)
    visitor = linked_visitor(s, u)
    return {
        **serialize_client(s, u),
        "kpis": client_kpis(projects),
        "projects": [serialize_project(p) for p in projects],
        "payments": [serialize_payment(p) for p in client_payments(s, u)],
        "visitor": serialize_visitor(visitor) if visitor else None,
    }
