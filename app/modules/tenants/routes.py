from fastapi import APIRouter, Depends, HTTPException, status
from app.core.components import AuthzComponents
from app.core.dependencies import get_components, get_current_user_id, get_session_context
from app.modules.tenants.context import TenantContextHolder
from app.modules.tenants.schemas import TenantSwitchRequest, TenantContextResponse, TenantSwitchResponse
from typing import Dict

router = APIRouter(prefix="/tenants", tags=["tenants"])


@router.get("/context", response_model=TenantContextResponse)
async def get_context(holder: TenantContextHolder = Depends(get_session_context)):
    """Current tenant and user of the caller's session"""
    context = holder.snapshot()
    return TenantContextResponse(user_id=context.user_id, tenant_id=context.tenant_id)


@router.post("/context/switch", response_model=TenantSwitchResponse)
async def switch_context(
    body: TenantSwitchRequest,
    user_data: Dict = Depends(get_current_user_id),
    holder: TenantContextHolder = Depends(get_session_context)
):
    """Switch the session to another tenant the caller belongs to"""
    result = await holder.switch_tenant_context(user_data["id"], body.tenant_id)
    if not result.success:
        if result.reason == "forbidden":
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=result.error)
        if result.reason == "unavailable":
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result.error)
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=result.error)
    return TenantSwitchResponse(
        success=True,
        tenant_id=result.tenant_id,
        message=f"Switched to tenant {result.tenant_id}"
    )


@router.delete("/context", status_code=204)
async def clear_context(
    user_data: Dict = Depends(get_current_user_id),
    components: AuthzComponents = Depends(get_components)
):
    """Forget the caller's session context (logout)"""
    await components.sessions.remove(user_data["id"])
    return None
