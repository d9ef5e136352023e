from fastapi import APIRouter, Depends
from app.core.dependencies import (
    get_current_user_id,
    get_permission_resolver,
    get_session_context,
    raise_for_core_error,
    require_super_admin,
)
from app.core.exceptions import InfrastructureError, ValidationError
from app.modules.permissions.resolver import PermissionResolver
from app.modules.permissions.schemas import (
    PermissionCheckRequest, PermissionCheckBody, PermissionCheckResponse,
    BatchPermissionCheckBody, BatchPermissionCheckResponse,
    CacheInvalidateBody, CacheInvalidateResponse, CacheStatsResponse,
    RoleInvalidateBody, RoleInvalidateResponse, CacheWarmBody, CacheWarmResponse
)
from app.modules.tenants.context import TenantContextHolder
from typing import Dict

router = APIRouter(prefix="/permissions", tags=["permissions"])


def _to_request(user_id: str, body: PermissionCheckBody, holder: TenantContextHolder) -> PermissionCheckRequest:
    """Build a check for the caller; tenant defaults to the session's current tenant"""
    return PermissionCheckRequest.build(
        user_id=user_id,
        resource_type=body.resource_type,
        action=body.action,
        tenant_id=body.tenant_id if body.tenant_id is not None else holder.get_current_tenant_id(),
        resource_id=body.resource_id,
    )


def _to_response(request: PermissionCheckRequest, allowed: bool) -> PermissionCheckResponse:
    return PermissionCheckResponse(
        allowed=allowed,
        user_id=request.user_id,
        tenant_id=request.tenant_id,
        resource_type=request.resource_type,
        action=request.action,
        resource_id=request.resource_id,
    )


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    body: PermissionCheckBody,
    user_data: Dict = Depends(get_current_user_id),
    holder: TenantContextHolder = Depends(get_session_context),
    resolver: PermissionResolver = Depends(get_permission_resolver)
):
    """Check whether the caller may perform an action (denial is a 200 with allowed=false)"""
    try:
        request = _to_request(user_data["id"], body, holder)
        allowed = await resolver.check(request)
    except (ValidationError, InfrastructureError) as e:
        raise_for_core_error(e)
    return _to_response(request, allowed)


@router.post("/check-batch", response_model=BatchPermissionCheckResponse)
async def check_permissions_batch(
    body: BatchPermissionCheckBody,
    user_data: Dict = Depends(get_current_user_id),
    holder: TenantContextHolder = Depends(get_session_context),
    resolver: PermissionResolver = Depends(get_permission_resolver)
):
    """Check several actions at once for the caller"""
    try:
        requests = [_to_request(user_data["id"], check, holder) for check in body.checks]
        results = await resolver.check_many(requests)
    except (ValidationError, InfrastructureError) as e:
        raise_for_core_error(e)
    return BatchPermissionCheckResponse(
        results=[_to_response(r, allowed) for r, allowed in zip(requests, results)]
    )


@router.post("/cache/invalidate", response_model=CacheInvalidateResponse)
async def invalidate_user_cache(
    body: CacheInvalidateBody,
    user_data: Dict = Depends(require_super_admin),
    resolver: PermissionResolver = Depends(get_permission_resolver)
):
    """Drop cached outcomes for a user after a role change (optionally one tenant only)"""
    removed = resolver.invalidate_user_cache(body.user_id, body.tenant_id)
    return CacheInvalidateResponse(user_id=body.user_id, tenant_id=body.tenant_id, removed=removed)


@router.post("/cache/invalidate-role", response_model=RoleInvalidateResponse)
async def invalidate_role_cache(
    body: RoleInvalidateBody,
    user_data: Dict = Depends(require_super_admin),
    resolver: PermissionResolver = Depends(get_permission_resolver)
):
    """Drop cached outcomes for every user holding a role (role definition changed)"""
    try:
        user_ids = await resolver.invalidate_role_cache(body.role_id)
    except (ValidationError, InfrastructureError) as e:
        raise_for_core_error(e)
    return RoleInvalidateResponse(role_id=body.role_id, user_ids=user_ids)


@router.post("/cache/warm", response_model=CacheWarmResponse)
async def warm_cache(
    body: CacheWarmBody,
    user_data: Dict = Depends(require_super_admin),
    resolver: PermissionResolver = Depends(get_permission_resolver)
):
    """Pre-resolve common checks for a set of users"""
    try:
        warmed = await resolver.warm(body.user_ids, body.resource_types, body.actions, tenant_id=body.tenant_id)
    except ValidationError as e:
        raise_for_core_error(e)
    requested = len(body.user_ids) * len(body.resource_types) * len(body.actions)
    return CacheWarmResponse(requested=requested, warmed=warmed)


@router.delete("/cache", status_code=204)
async def invalidate_all_cache(
    user_data: Dict = Depends(require_super_admin),
    resolver: PermissionResolver = Depends(get_permission_resolver)
):
    """Clear every cached outcome (global role/permission schema change)"""
    resolver.invalidate_all_cache()
    return None


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(
    user_data: Dict = Depends(require_super_admin),
    resolver: PermissionResolver = Depends(get_permission_resolver)
):
    """Cache size and hit rate"""
    return CacheStatsResponse(**resolver.cache_stats())
