from app.modules.permissions.schemas import Action, PermissionCheckRequest
from app.modules.permissions.cache import PermissionCache
from app.modules.permissions.bitfield_cache import ActionBitfieldCache
from app.modules.permissions.backend import AuthorizationBackend, SupabaseAuthorizationBackend
from app.modules.permissions.resolver import PermissionResolver

__all__ = [
    "Action",
    "PermissionCheckRequest",
    "PermissionCache",
    "ActionBitfieldCache",
    "AuthorizationBackend",
    "SupabaseAuthorizationBackend",
    "PermissionResolver",
]
