"""
Permission resolver: cache, SuperAdmin shortcut, then the backing store.

A denial is a normal False result. Only infrastructure failures raise, and
they are never cached, so the next call goes back to the backing store.
"""
import asyncio
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, TYPE_CHECKING

from app.config import settings
from app.core.exceptions import InfrastructureError, ValidationError
from app.modules.audit.schemas import AuditEvent
from app.modules.audit.service import AuditDispatcher
from app.modules.permissions.backend import AuthorizationBackend, call_backend
from app.modules.permissions.bitfield_cache import ActionBitfieldCache
from app.modules.permissions.cache import PermissionCache
from app.modules.permissions.keys import permission_key, super_admin_key, user_prefix
from app.modules.permissions.schemas import PermissionCheckRequest

if TYPE_CHECKING:
    from app.modules.tenants.context import TenantContextHolder

logger = logging.getLogger(__name__)


class PermissionResolver:
    def __init__(
        self,
        backend: AuthorizationBackend,
        cache: Optional[PermissionCache] = None,
        audit: Optional[AuditDispatcher] = None,
        bitfield_cache: Optional[ActionBitfieldCache] = None,
        timeout: Optional[float] = None,
        ttl: Optional[float] = None,
        super_admin_ttl: Optional[float] = None,
    ):
        self.backend = backend
        self.cache = cache if cache is not None else PermissionCache()
        self.bitfield_cache = bitfield_cache
        self.audit = audit
        self.timeout = settings.backend_timeout_seconds if timeout is None else timeout
        self.ttl = settings.permission_cache_ttl_seconds if ttl is None else ttl
        self.super_admin_ttl = settings.super_admin_cache_ttl_seconds if super_admin_ttl is None else super_admin_ttl
        # Bumped by invalidation; a backend answer is only cached if the
        # generation it was fetched under is still current
        self._generation_lock = threading.Lock()
        self._global_generation = 0
        self._user_generations: Dict[str, int] = {}

    # Cache access

    def _generation(self, user_id: str) -> Tuple[int, int]:
        with self._generation_lock:
            return self._global_generation, self._user_generations.get(user_id, 0)

    def _bump_generation(self, user_id: Optional[str] = None) -> None:
        with self._generation_lock:
            if user_id is None:
                self._global_generation += 1
            else:
                self._user_generations[user_id] = self._user_generations.get(user_id, 0) + 1

    def _cached(self, request: PermissionCheckRequest) -> Optional[bool]:
        if self.bitfield_cache is not None:
            return self.bitfield_cache.get(request)
        return self.cache.get(permission_key(request))

    def _remember(self, request: PermissionCheckRequest, allowed: bool, generation: Tuple[int, int]) -> None:
        if self._generation(request.user_id) != generation:
            logger.debug(f"Not caching {permission_key(request)}: invalidated while in flight")
            return
        if self.bitfield_cache is not None:
            self.bitfield_cache.set(request, allowed, self.ttl)
        else:
            self.cache.set(permission_key(request), allowed, self.ttl)

    async def is_super_admin(self, user_id: str) -> bool:
        key = super_admin_key(user_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        generation = self._generation(user_id)
        result = bool(await call_backend("is_super_admin", self.backend.is_super_admin(user_id), self.timeout))
        if self._generation(user_id) == generation:
            self.cache.set(key, result, self.super_admin_ttl)
        return result

    # Checks

    async def check(self, request: PermissionCheckRequest, extra: Optional[Dict[str, Any]] = None) -> bool:
        if not isinstance(request, PermissionCheckRequest):
            raise ValidationError(f"Expected PermissionCheckRequest, got {type(request).__name__}")

        cached = self._cached(request)
        if cached is not None:
            logger.debug(f"Permission cache hit for {permission_key(request)}")
            self._audit(request, "granted" if cached else "denied", cached=True, extra=extra)
            return cached
        logger.debug(f"Permission cache miss for {permission_key(request)}")
        generation = self._generation(request.user_id)

        try:
            if await self.is_super_admin(request.user_id):
                self._remember(request, True, generation)
                self._audit(request, "granted", super_admin=True, extra=extra)
                return True

            allowed = bool(await call_backend(
                "check_permission",
                self.backend.check_permission(
                    request.user_id,
                    request.tenant_id,
                    request.resource_type,
                    request.action.value,
                    request.resource_id,
                ),
                self.timeout,
            ))
        except InfrastructureError as e:
            logger.error(
                f"Permission check for user {request.user_id} on {request.resource_type}:"
                f"{request.action.value} failed closed: {e}"
            )
            self._audit(request, "error", error=str(e), extra=extra)
            raise

        self._remember(request, allowed, generation)
        if not allowed:
            logger.info(
                f"Permission denied: user {request.user_id} tenant {request.tenant_id} "
                f"{request.resource_type}:{request.action.value} resource {request.resource_id}"
            )
        self._audit(request, "granted" if allowed else "denied", extra=extra)
        return allowed

    async def check_permission(
        self,
        user_id: str,
        resource_type: str,
        action: str,
        tenant_id: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> bool:
        request = PermissionCheckRequest.build(
            user_id=user_id,
            resource_type=resource_type,
            action=action,
            tenant_id=tenant_id,
            resource_id=resource_id,
        )
        return await self.check(request)

    async def check_many(self, requests: Sequence[PermissionCheckRequest]) -> List[bool]:
        """Check several requests; cache hits answer immediately, misses run concurrently"""
        results: List[Optional[bool]] = [None] * len(requests)
        misses = []
        for i, request in enumerate(requests):
            cached = self._cached(request)
            if cached is None:
                misses.append(i)
            else:
                self._audit(request, "granted" if cached else "denied", cached=True)
                results[i] = cached

        if misses:
            outcomes = await asyncio.gather(
                *(self.check(requests[i]) for i in misses), return_exceptions=True
            )
            for i, outcome in zip(misses, outcomes):
                if isinstance(outcome, BaseException):
                    raise outcome
                results[i] = outcome
        return [bool(r) for r in results]

    async def warm(
        self,
        user_ids: Iterable[str],
        resource_types: Iterable[str],
        actions: Iterable[str],
        tenant_id: Optional[str] = None,
    ) -> int:
        """
        Pre-resolve every (user, resource type, action) combination so the
        first real checks after a cold start or an invalidation are cache hits.

        Malformed input raises ValidationError before anything is checked.
        Backend failures are logged per item and skipped.

        Returns:
            Number of combinations resolved without a backend failure
        """
        resource_types = list(resource_types)
        actions = list(actions)
        requests = [
            PermissionCheckRequest.build(
                user_id=user_id,
                resource_type=resource_type,
                action=action,
                tenant_id=tenant_id,
            )
            for user_id in user_ids
            for resource_type in resource_types
            for action in actions
        ]
        outcomes = await asyncio.gather(
            *(self.check(request, extra={"warming": True}) for request in requests), return_exceptions=True
        )
        warmed = 0
        for request, outcome in zip(requests, outcomes):
            if isinstance(outcome, InfrastructureError):
                logger.warning(
                    f"Could not warm {request.resource_type}:{request.action.value} "
                    f"for user {request.user_id}: {outcome}"
                )
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                warmed += 1
        logger.info(f"Warmed {warmed}/{len(requests)} permission checks")
        return warmed

    async def check_in_context(
        self,
        holder: "TenantContextHolder",
        resource_type: str,
        action: str,
        resource_id: Optional[str] = None,
    ) -> bool:
        """Check for the holder's current user in its current tenant, read as one snapshot"""
        context = holder.snapshot()
        if context.user_id is None:
            raise ValidationError("No user set in tenant context")
        return await self.check_permission(
            context.user_id,
            resource_type,
            action,
            tenant_id=context.tenant_id,
            resource_id=resource_id,
        )

    # Invalidation

    def invalidate_user_cache(self, user_id: str, tenant_id: Optional[str] = None) -> int:
        """Drop cached outcomes for a user (optionally one tenant only) and the user's SuperAdmin flag"""
        self._bump_generation(user_id)
        prefix = user_prefix(user_id, tenant_id)
        removed = self.cache.invalidate(prefix)
        if self.bitfield_cache is not None:
            removed += self.bitfield_cache.invalidate(prefix)
        self.cache.delete(super_admin_key(user_id))
        logger.info(f"Invalidated {removed} cached permissions for user {user_id}"
                    + (f" in tenant {tenant_id}" if tenant_id else ""))
        return removed

    async def invalidate_role_cache(self, role_id: str) -> List[str]:
        """Invalidate every user currently holding role_id. Returns the affected user ids."""
        if not role_id or not role_id.strip():
            raise ValidationError("role_id must not be blank")
        user_ids = await call_backend("get_role_user_ids", self.backend.get_role_user_ids(role_id), self.timeout)
        user_ids = sorted(set(user_ids))
        for user_id in user_ids:
            self.invalidate_user_cache(user_id)
        logger.info(f"Invalidated cached permissions for {len(user_ids)} users holding role {role_id}")
        return user_ids

    def invalidate_all_cache(self) -> None:
        self._bump_generation()
        self.cache.clear()
        if self.bitfield_cache is not None:
            self.bitfield_cache.clear()

    def sweep_expired(self) -> int:
        removed = self.cache.sweep_expired()
        if self.bitfield_cache is not None:
            removed += self.bitfield_cache.sweep_expired()
        return removed

    def cache_stats(self) -> Dict[str, Any]:
        if self.bitfield_cache is not None:
            return {"backend": "bitfield", "stats": self.bitfield_cache.stats()}
        return {"backend": "entries", "stats": self.cache.stats()}

    # Audit

    def _audit(
        self,
        request: PermissionCheckRequest,
        outcome: str,
        cached: bool = False,
        super_admin: bool = False,
        error: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self.audit is None:
            return
        try:
            self.audit.dispatch(AuditEvent(
                user_id=request.user_id,
                tenant_id=request.tenant_id,
                resource_type=request.resource_type,
                action=request.action.value,
                resource_id=request.resource_id,
                outcome=outcome,
                cached=cached,
                super_admin=super_admin,
                error=error,
                extra=extra or {},
            ))
        except Exception as e:
            logger.warning(f"Could not queue audit event: {e}")
