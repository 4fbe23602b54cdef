# Overview: Helper utilities for permission lookups.

from .definitions import (
    DEFAULT_ROLES,
    MODULE_PERMISSIONS,
    SPECIAL_ACTIONS,
    STANDALONE_PERMISSIONS,
)


def get_all_permission_codes() -> list[str]:
    return [p[0] for p in MODULE_PERMISSIONS + STANDALONE_PERMISSIONS]


def get_special_action_codes() -> list[str]:
    return [a[0] for a in SPECIAL_ACTIONS]


def get_permissions_by_module(module: str) -> list[str]:
    return [p[0] for p in MODULE_PERMISSIONS + STANDALONE_PERMISSIONS if p[3] == module]


def get_permission_definition(code: str):
    for perm in MODULE_PERMISSIONS + STANDALONE_PERMISSIONS:
        if perm[0] == code:
            return perm
    return None


def validate_permission_code(code: str) -> bool:
    return get_permission_definition(code) is not None


def default_role_permissions(role_name: str) -> list[str]:
    definition = DEFAULT_ROLES[role_name]
    if definition["permissions"] == "*":
        return get_all_permission_codes()
    return list(definition["permissions"])
