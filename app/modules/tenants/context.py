"""Tenant context for one logical session."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from app.config import settings
from app.core.exceptions import InfrastructureError, ValidationError
from app.modules.permissions.backend import AuthorizationBackend, call_backend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantContext:
    """
    Immutable snapshot of a session's tenant and user.

    The holder replaces the whole snapshot on every change, so a reader
    never sees the tenant of one switch paired with the user of another.

    Attributes:
        tenant_id: Current tenant, None for global scope / not selected
        user_id: Current user, None before login and after logout
    """

    tenant_id: Optional[str] = None
    user_id: Optional[str] = None


@dataclass(frozen=True)
class TenantSwitchResult:
    success: bool
    tenant_id: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[str] = None  # invalid | forbidden | unavailable


EMPTY_CONTEXT = TenantContext()


class TenantContextHolder:
    """
    Current tenant and user for a session, kept consistent with the backing store.

    Mutations run one at a time (asyncio.Lock) and only commit after the
    backing store has accepted the new tenant. Reads are synchronous.
    """

    def __init__(self, backend: AuthorizationBackend, timeout: Optional[float] = None):
        self.backend = backend
        self.timeout = settings.backend_timeout_seconds if timeout is None else timeout
        self._context = EMPTY_CONTEXT
        self._lock = asyncio.Lock()

    def snapshot(self) -> TenantContext:
        return self._context

    def get_current_tenant_id(self) -> Optional[str]:
        return self._context.tenant_id

    def get_current_user_id(self) -> Optional[str]:
        return self._context.user_id

    def set_user_context(self, user_id: str) -> None:
        if not user_id or not user_id.strip():
            raise ValidationError("user_id must not be blank")
        self._context = TenantContext(tenant_id=self._context.tenant_id, user_id=user_id)

    async def _propagate(self, tenant_id: str) -> None:
        await call_backend(
            "set_tenant_context",
            self.backend.set_tenant_context(tenant_id),
            self.timeout,
        )

    async def set_tenant_context(self, tenant_id: str) -> None:
        """
        Record tenant_id as current after the backing store accepts it.

        Performs no membership validation; use switch_tenant_context for that.

        Raises:
            ValidationError: tenant_id is blank
            InfrastructureError: propagation failed; the context is unchanged
        """
        if not tenant_id or not tenant_id.strip():
            raise ValidationError("tenant_id must not be blank")
        async with self._lock:
            await self._propagate(tenant_id)
            self._context = TenantContext(tenant_id=tenant_id, user_id=self._context.user_id)
        logger.debug(f"Tenant context set to {tenant_id}")

    async def switch_tenant_context(self, user_id: str, tenant_id: str) -> TenantSwitchResult:
        """
        Move the session to tenant_id on behalf of user_id.

        Membership is verified first; user and tenant are committed together
        only after verification and propagation both succeed. On any failure
        the previous context is left as it was.
        """
        if not user_id or not user_id.strip() or not tenant_id or not tenant_id.strip():
            return TenantSwitchResult(success=False, error="user_id and tenant_id are required", reason="invalid")

        async with self._lock:
            try:
                is_member = await call_backend(
                    "has_tenant_membership",
                    self.backend.has_tenant_membership(user_id, tenant_id),
                    self.timeout,
                )
                if not is_member:
                    logger.info(f"User {user_id} denied switch to tenant {tenant_id}: no membership")
                    return TenantSwitchResult(success=False, error="No access to specified tenant", reason="forbidden")
                await self._propagate(tenant_id)
            except InfrastructureError as e:
                logger.error(f"Error switching tenant context for user {user_id}: {e}")
                return TenantSwitchResult(success=False, error="Failed to switch tenant context", reason="unavailable")

            self._context = TenantContext(tenant_id=tenant_id, user_id=user_id)

        logger.info(f"User {user_id} switched to tenant {tenant_id}")
        return TenantSwitchResult(success=True, tenant_id=tenant_id)

    async def clear_context(self) -> None:
        """Reset to the empty context (logout). Waits for an in-flight switch so it cannot commit afterwards."""
        async with self._lock:
            self._context = EMPTY_CONTEXT
