"""
Cache key construction for permission checks.

Format: perm:{user}:{tenant|*global}:{resource_type}:{action}:{resource_id|*any}

Every present component is percent-encoded with no safe characters, so an
encoded identifier never contains ':' or '*'. The fallback tokens therefore
cannot collide with a real tenant or resource called "global" or "any".
"""

from typing import Optional
from urllib.parse import quote

from app.modules.permissions.schemas import PermissionCheckRequest

KEY_PREFIX = "perm"
SUPER_ADMIN_PREFIX = "superadmin"
GLOBAL_SCOPE = "*global"
ANY_RESOURCE = "*any"


def _encode(value: str) -> str:
    return quote(value, safe="")


def _scope(tenant_id: Optional[str]) -> str:
    return GLOBAL_SCOPE if tenant_id is None else _encode(tenant_id)


def permission_key(request: PermissionCheckRequest) -> str:
    return ":".join([
        KEY_PREFIX,
        _encode(request.user_id),
        _scope(request.tenant_id),
        _encode(request.resource_type),
        request.action.value,
        ANY_RESOURCE if request.resource_id is None else _encode(request.resource_id),
    ])


def resource_key(request: PermissionCheckRequest) -> str:
    """Key shared by every action on one (user, tenant, resource_type, resource_id); used by the bitfield cache"""
    return ":".join([
        KEY_PREFIX,
        _encode(request.user_id),
        _scope(request.tenant_id),
        _encode(request.resource_type),
        ANY_RESOURCE if request.resource_id is None else _encode(request.resource_id),
    ])


def user_prefix(user_id: str, tenant_id: Optional[str] = None, global_scope: bool = False) -> str:
    """Prefix matching every key of a user, or of a user within one tenant (or the global scope)"""
    prefix = f"{KEY_PREFIX}:{_encode(user_id)}:"
    if tenant_id is not None:
        prefix += f"{_encode(tenant_id)}:"
    elif global_scope:
        prefix += f"{GLOBAL_SCOPE}:"
    return prefix


def super_admin_key(user_id: str) -> str:
    return f"{SUPER_ADMIN_PREFIX}:{_encode(user_id)}"
