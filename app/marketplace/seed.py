"""
Idempotent seeding of roles and permissions. Used by scripts/init_db.py and the test-suite.
"""
from __future__ import annotations

from sqlalchemy.orm import Session

from app.marketplace.constants import PERMISSIONS, ROLE_NAMES, ROLE_PERMISSIONS
from app.marketplace.models import Permission, Role


def ensure_permission(s: Session, key: str, name: str) -> Permission:
    p = s.query(Permission).filter(Permission.key == key).one_or_none()
    if p:
        return p
    p = Permission(key=key, name=name)
    s.add(p)
    s.flush()
    return p


def ensure_role(s: Session, key: str, name: str) -> Role:
    r = s.query(Role).filter(Role.key == key).one_or_none()
    if r:
        return r
    r = Role(key=key, name=name)
    s.add(r)
    s.flush()
    return r


def seed_roles(s: Session) -> dict[str, Role]:
    perms = {key: ensure_permission(s, key, name) for key, name in PERMISSIONS.items()}
    roles: dict[str, Role] = {}
    for role_key, perm_keys in ROLE_PERMISSIONS.items():
        role = ensure_role(s, role_key, ROLE_NAMES[role_key])
        for pk in perm_keys:
            if perms[pk] not in role.permissions:
                role.permissions.append(perms[pk])
        roles[role_key] = role
    s.flush()
    return roles


def get_role(s: Session, key: str) -> Role:
    role = s.query(Role).filter(Role.key == key).one_or_none()
    if role is None:
        # Fresh databases (tests, first boot before init_db) still get a working role table.
        role = seed_roles(s)[key]
    return role
