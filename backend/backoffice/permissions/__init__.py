# Overview: Permission catalogue package exports.

from .definitions import (
    MODULES,
    MODULE_PERMISSIONS,
    STANDALONE_PERMISSIONS,
    SPECIAL_ACTIONS,
    DEFAULT_ROLES,
)
from .helpers import (
    get_all_permission_codes,
    get_special_action_codes,
    get_permissions_by_module,
    get_permission_definition,
    validate_permission_code,
    default_role_permissions,
)

__all__ = [
    "MODULES",
    "MODULE_PERMISSIONS",
    "STANDALONE_PERMISSIONS",
    "SPECIAL_ACTIONS",
    "DEFAULT_ROLES",
    "get_all_permission_codes",
    "get_special_action_codes",
    "get_permissions_by_module",
    "get_permission_definition",
    "validate_permission_code",
    "default_role_permissions",
]
