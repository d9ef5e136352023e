"""
Core dependencies for route protection and permission checking
"""

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.core.components import AuthzComponents
from app.core.exceptions import InfrastructureError, ValidationError
from app.database.supabase_client import get_supabase
from app.modules.auth.service import AuthService
from app.modules.permissions.resolver import PermissionResolver
from app.modules.tenants.context import TenantContextHolder
from supabase import Client
from typing import Optional
import logging

logger = logging.getLogger(__name__)

security = HTTPBearer()


def get_auth_service(supabase: Client = Depends(get_supabase)) -> AuthService:
    return AuthService(supabase)


def get_current_token(
    credentials: HTTPAuthorizationCredentials = Security(security)
) -> str:
    """Extract JWT token from Authorization header"""
    return credentials.credentials


def get_current_user_id(
    token: str = Depends(get_current_token),
    auth_service: AuthService = Depends(get_auth_service)
) -> dict:
    """Extract current user info from JWT token"""
    return auth_service.get_current_user(token)


def get_components(request: Request) -> AuthzComponents:
    components = getattr(request.app.state, "authz", None)
    if components is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Permission service not initialised"
        )
    return components


def get_permission_resolver(components: AuthzComponents = Depends(get_components)) -> PermissionResolver:
    return components.resolver


def get_session_context(
    user_data: dict = Depends(get_current_user_id),
    components: AuthzComponents = Depends(get_components)
) -> TenantContextHolder:
    """Tenant context of the caller's session. One session per authenticated user."""
    holder = components.sessions.get_or_create(user_data["id"])
    if holder.get_current_user_id() != user_data["id"]:
        holder.set_user_context(user_data["id"])
    return holder


def raise_for_core_error(e: Exception) -> None:
    """Translate permission-core errors into HTTP errors"""
    if isinstance(e, ValidationError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    if isinstance(e, InfrastructureError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authorization backend unavailable"
        )
    raise e


def require_permission(resource_type: str, action: str, resource_id_param: Optional[str] = None):
    """Factory function to create permission check dependency.

    The check runs for the caller in the session's current tenant. When
    resource_id_param names a path parameter, the check is instance-scoped.
    """
    async def check_permission(
        request: Request,
        user_data: dict = Depends(get_current_user_id),
        holder: TenantContextHolder = Depends(get_session_context),
        resolver: PermissionResolver = Depends(get_permission_resolver)
    ) -> dict:
        resource_id = request.path_params.get(resource_id_param) if resource_id_param else None
        try:
            allowed = await resolver.check_in_context(holder, resource_type, action, resource_id=resource_id)
        except (ValidationError, InfrastructureError) as e:
            raise_for_core_error(e)
        if not allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required: {resource_type}:{action}"
            )
        return user_data
    return check_permission


async def require_super_admin(
    user_data: dict = Depends(get_current_user_id),
    resolver: PermissionResolver = Depends(get_permission_resolver)
) -> dict:
    try:
        is_super_admin = await resolver.is_super_admin(user_data["id"])
    except InfrastructureError as e:
        raise_for_core_error(e)
    if not is_super_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="SuperAdmin privileges required"
        )
    return user_data
