"""
Backing authorization check.

The database (RLS policies and RPC functions) owns roles and grants; this
module only asks it questions. Every call may be slow or fail, so callers
wrap them with `call_backend`, which bounds the wait and turns every failure
into InfrastructureError.
"""
import asyncio
import logging
from typing import Any, Awaitable, List, Optional, Protocol

from supabase import Client

from app.core.exceptions import InfrastructureError

logger = logging.getLogger(__name__)


class AuthorizationBackend(Protocol):
    async def check_permission(
        self,
        user_id: str,
        tenant_id: Optional[str],
        resource_type: str,
        action: str,
        resource_id: Optional[str] = None,
    ) -> bool:
        ...

    async def is_super_admin(self, user_id: str) -> bool:
        ...

    async def set_tenant_context(self, tenant_id: str) -> None:
        ...

    async def has_tenant_membership(self, user_id: str, tenant_id: str) -> bool:
        ...

    async def get_role_user_ids(self, role_id: str) -> List[str]:
        ...


async def call_backend(operation: str, awaitable: Awaitable[Any], timeout: float) -> Any:
    """Await a backend call with a deadline. Timeouts and errors become InfrastructureError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"Backend call {operation} timed out after {timeout}s")
        raise InfrastructureError(operation, f"timed out after {timeout}s")
    except InfrastructureError:
        raise
    except Exception as e:
        logger.error(f"Backend call {operation} failed: {e}")
        raise InfrastructureError(operation, str(e)) from e


class SupabaseAuthorizationBackend:
    """AuthorizationBackend over Supabase RPC functions and the user_roles table"""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def _rpc_bool(self, function: str, params: dict) -> bool:
        result = self.supabase.rpc(function, params).execute()
        return bool(result.data)

    def _check_permission_sync(
        self,
        user_id: str,
        tenant_id: Optional[str],
        resource_type: str,
        action: str,
        resource_id: Optional[str],
    ) -> bool:
        # RLS on the backing store reads the session tenant, so it must be set first
        if tenant_id is not None:
            self._set_tenant_context_sync(tenant_id)
        params = {
            "p_user_id": user_id,
            "p_action": action,
            "p_resource": resource_type,
            "p_tenant_id": tenant_id,
        }
        if resource_id is None:
            return self._rpc_bool("check_user_permission", params)
        params["p_resource_id"] = resource_id
        return self._rpc_bool("check_resource_specific_permission", params)

    def _set_tenant_context_sync(self, tenant_id: str) -> None:
        self.supabase.rpc("set_tenant_context", {"tenant_id": tenant_id}).execute()

    def _has_tenant_membership_sync(self, user_id: str, tenant_id: str) -> bool:
        result = self.supabase.table("user_roles")\
            .select("id")\
            .eq("user_id", user_id)\
            .eq("tenant_id", tenant_id)\
            .limit(1)\
            .execute()
        return bool(result.data)

    def _get_role_user_ids_sync(self, role_id: str) -> List[str]:
        result = self.supabase.table("user_roles")\
            .select("user_id")\
            .eq("role_id", role_id)\
            .execute()
        return [row["user_id"] for row in (result.data or [])]

    async def check_permission(
        self,
        user_id: str,
        tenant_id: Optional[str],
        resource_type: str,
        action: str,
        resource_id: Optional[str] = None,
    ) -> bool:
        return await asyncio.to_thread(
            self._check_permission_sync, user_id, tenant_id, resource_type, action, resource_id
        )

    async def is_super_admin(self, user_id: str) -> bool:
        return await asyncio.to_thread(self._rpc_bool, "is_super_admin", {"p_user_id": user_id})

    async def set_tenant_context(self, tenant_id: str) -> None:
        await asyncio.to_thread(self._set_tenant_context_sync, tenant_id)

    async def has_tenant_membership(self, user_id: str, tenant_id: str) -> bool:
        return await asyncio.to_thread(self._has_tenant_membership_sync, user_id, tenant_id)

    async def get_role_user_ids(self, role_id: str) -> List[str]:
        return await asyncio.to_thread(self._get_role_user_ids_sync, role_id)
