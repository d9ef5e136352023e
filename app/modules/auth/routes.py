from fastapi import APIRouter, Depends
from app.core.components import AuthzComponents
from app.core.dependencies import (
    get_auth_service,
    get_components,
    get_current_token,
    get_current_user_id,
    get_session_context,
    raise_for_core_error,
)
from app.core.exceptions import InfrastructureError
from app.modules.auth.schemas import MeResponse
from app.modules.auth.service import AuthService
from app.modules.tenants.context import TenantContextHolder
from typing import Dict

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=MeResponse)
async def get_current_user(
    current_user: Dict = Depends(get_current_user_id),
    holder: TenantContextHolder = Depends(get_session_context),
    components: AuthzComponents = Depends(get_components)
):
    """Get current authenticated user, SuperAdmin status and session tenant (for frontend UI)."""
    try:
        is_super_admin = await components.resolver.is_super_admin(current_user["id"])
    except InfrastructureError as e:
        raise_for_core_error(e)
    return MeResponse(
        id=current_user["id"],
        email=current_user.get("email"),
        is_super_admin=is_super_admin,
        tenant_id=holder.get_current_tenant_id(),
    )


@router.post("/logout", status_code=200)
async def logout(
    token: str = Depends(get_current_token),
    current_user: Dict = Depends(get_current_user_id),
    service: AuthService = Depends(get_auth_service),
    components: AuthzComponents = Depends(get_components)
):
    """Logout: clear the session's tenant context and sign out"""
    await components.sessions.remove(current_user["id"])
    service.logout(token)
    return {"message": "Logged out successfully"}
