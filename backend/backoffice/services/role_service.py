# Overview: Org-scoped roles and permission checks.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Role, User
from ..permissions import (
    DEFAULT_ROLES,
    default_role_permissions,
    get_special_action_codes,
    validate_permission_code,
)
from .audit_service import append_event


class RoleError(Exception):
    """Raised when role operations fail."""
    pass


class RoleNotFound(RoleError):
    pass


class PermissionDeniedError(Exception):
    """Raised when a user lacks a required permission."""
    pass


def _clean_permissions(permissions) -> list[str]:
    codes = sorted({str(p).strip() for p in (permissions or []) if str(p).strip()})
    unknown = [c for c in codes if not validate_permission_code(c)]
    if unknown:
        raise RoleError(f"Unknown permissions: {', '.join(unknown)}")
    return codes


def _clean_special_actions(actions) -> list[str]:
    allowed = set(get_special_action_codes())
    codes = sorted({str(a).strip() for a in (actions or []) if str(a).strip()})
    unknown = [c for c in codes if c not in allowed]
    if unknown:
        raise RoleError(f"Unknown special actions: {', '.join(unknown)}")
    return codes


def get_role(role_id: int, org_id: int) -> Role:
    role = db.session.query(Role).filter_by(id=role_id, org_id=org_id).first()
    if not role:
        raise RoleNotFound(f"Role {role_id} not found")
    return role


def _name_taken(org_id: int, name: str, exclude_id: int | None = None) -> bool:
    q = db.session.query(Role.id).filter(Role.org_id == org_id, func.lower(Role.name) == name.lower())
    if exclude_id is not None:
        q = q.filter(Role.id != exclude_id)
    return q.first() is not None


def create_default_roles(org_id: int) -> list[Role]:
    """Idempotently seed the system roles for an organization."""
    roles = []
    for name, definition in DEFAULT_ROLES.items():
        role = db.session.query(Role).filter_by(org_id=org_id, name=name).first()
        if not role:
            role = Role(
                org_id=org_id,
                name=name,
                description=definition["description"],
                permissions=default_role_permissions(name),
                special_actions=list(definition["special_actions"]),
                is_system=True,
            )
            db.session.add(role)
        roles.append(role)
    db.session.flush()
    return roles


def create_role(
    *,
    org_id: int,
    name: str,
    permissions: list[str],
    special_actions: list[str] | None = None,
    description: str | None = None,
    actor_user_id: int | None = None,
) -> Role:
    name = (name or "").strip()
    if not name:
        raise RoleError("Role name is required")
    if _name_taken(org_id, name):
        raise RoleError(f"A role named '{name}' already exists")

    role = Role(
        org_id=org_id,
        name=name,
        description=description,
        permissions=_clean_permissions(permissions),
        special_actions=_clean_special_actions(special_actions),
        is_system=False,
    )
    db.session.add(role)
    db.session.flush()

    append_event(
        org_id=org_id,
        event_type="role.created",
        entity_type="role",
        entity_id=role.id,
        actor_user_id=actor_user_id,
    )
    return role


def update_role(
    role_id: int,
    org_id: int,
    *,
    name: str | None = None,
    description: str | None = None,
    permissions: list[str] | None = None,
    special_actions: list[str] | None = None,
    actor_user_id: int | None = None,
) -> Role:
    """
    Update a role.

    System roles keep their name and can only gain permissions.
    """
    role = get_role(role_id, org_id)

    if name is not None:
        name = name.strip()
        if not name:
            raise RoleError("Role name is required")
        if role.is_system and name != role.name:
            raise RoleError("System roles cannot be renamed")
        if _name_taken(org_id, name, exclude_id=role.id):
            raise RoleError(f"A role named '{name}' already exists")
        role.name = name

    if description is not None:
        role.description = description

    if permissions is not None:
        cleaned = _clean_permissions(permissions)
        if role.is_system:
            removed = set(role.permissions or []) - set(cleaned)
            if removed:
                raise RoleError("Permissions cannot be removed from a system role")
        role.permissions = cleaned

    if special_actions is not None:
        role.special_actions = _clean_special_actions(special_actions)

    db.session.flush()

    append_event(
        org_id=org_id,
        event_type="role.updated",
        entity_type="role",
        entity_id=role.id,
        actor_user_id=actor_user_id,
    )
    return role


def count_members(role_id: int) -> int:
    return db.session.query(func.count(User.id)).filter(
        User.role_id == role_id, User.is_active.is_(True)
    ).scalar() or 0


def delete_role(role_id: int, org_id: int, *, actor_user_id: int | None = None) -> Role:
    role = get_role(role_id, org_id)
    if role.is_system:
        raise RoleError("System roles cannot be deleted")
    members = count_members(role.id)
    if members:
        raise RoleError(f"Role has {members} active member(s); reassign them first")

    role.is_active = False
    db.session.flush()

    append_event(
        org_id=org_id,
        event_type="role.deleted",
        entity_type="role",
        entity_id=role.id,
        actor_user_id=actor_user_id,
    )
    return role


def duplicate_role(role_id: int, org_id: int, *, actor_user_id: int | None = None) -> Role:
    source = get_role(role_id, org_id)

    base = f"{source.name} (copia)"
    name = base
    suffix = 2
    while _name_taken(org_id, name):
        name = f"{base} {suffix}"
        suffix += 1

    return create_role(
        org_id=org_id,
        name=name,
        description=source.description,
        permissions=list(source.permissions or []),
        special_actions=list(source.special_actions or []),
        actor_user_id=actor_user_id,
    )


def list_roles(org_id: int, *, search: str | None = None, include_inactive: bool = False) -> list[tuple[Role, int]]:
    """Roles with their active member counts."""
    member_counts = (
        db.session.query(User.role_id, func.count(User.id).label("members"))
        .filter(User.org_id == org_id, User.is_active.is_(True))
        .group_by(User.role_id)
        .subquery()
    )
    q = (
        db.session.query(Role, func.coalesce(member_counts.c.members, 0))
        .outerjoin(member_counts, member_counts.c.role_id == Role.id)
        .filter(Role.org_id == org_id)
    )
    if not include_inactive:
        q = q.filter(Role.is_active.is_(True))
    if search:
        q = q.filter(Role.name.ilike(f"%{search}%"))
    return q.order_by(Role.is_system.desc(), Role.name).all()


def get_user_permissions(user: User) -> set[str]:
    role = user.role
    if not role or not role.is_active:
        return set()
    return set(role.permissions or [])


def get_user_special_actions(user: User) -> set[str]:
    role = user.role
    if not role or not role.is_active:
        return set()
    return set(role.special_actions or [])


def user_has_permission(user: User, permission_code: str) -> bool:
    return permission_code in get_user_permissions(user)


def user_has_special_action(user: User, action: str) -> bool:
    return action in get_user_special_actions(user)


def require_permission(user: User, permission_code: str) -> None:
    if not user_has_permission(user, permission_code):
        raise PermissionDeniedError(f"Missing permission: {permission_code}")
