import asyncio
import pytest
from typing import Dict, List, Optional, Set, Tuple
from fastapi import Depends, Request
from fastapi.testclient import TestClient

from app.config import Settings
from app.core.components import build_components
from app.core.dependencies import get_auth_service, get_current_token, get_current_user_id
from app.modules.audit.schemas import AuditEvent
from app.modules.audit.service import AuditDispatcher
from app.modules.permissions.cache import PermissionCache
from app.modules.permissions.resolver import PermissionResolver
# Import FastAPI app AFTER module imports
from app.main import app


class FakeClock:
    """Manually advanced monotonic clock for TTL tests"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    """
    In-memory stand-in for the Supabase RLS/RPC layer.

    grants: set of (user_id, tenant_id, resource_type, action, resource_id)
    super_admins: user ids that bypass everything
    memberships: set of (user_id, tenant_id)
    role_members: role id -> user ids holding it
    """

    def __init__(self):
        self.grants: Set[Tuple[str, Optional[str], str, str, Optional[str]]] = set()
        self.super_admins: Set[str] = set()
        self.memberships: Set[Tuple[str, str]] = set()
        self.role_members: Dict[str, List[str]] = {}
        self.permission_calls: List[Tuple] = []
        self.super_admin_calls: List[str] = []
        self.tenant_context_calls: List[str] = []
        self.membership_calls: List[Tuple[str, str]] = []
        self.session_tenant: Optional[str] = None
        self.fail_with: Optional[Exception] = None
        self.fail_set_tenant_with: Optional[Exception] = None
        self.delay: float = 0.0

    def grant(self, user_id, resource_type, action, tenant_id=None, resource_id=None):
        self.grants.add((user_id, tenant_id, resource_type, action, resource_id))

    async def _maybe_fail(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    async def check_permission(self, user_id, tenant_id, resource_type, action, resource_id=None) -> bool:
        self.permission_calls.append((user_id, tenant_id, resource_type, action, resource_id))
        await self._maybe_fail()
        if tenant_id is not None:
            self.session_tenant = tenant_id
        return (user_id, tenant_id, resource_type, action, resource_id) in self.grants

    async def is_super_admin(self, user_id: str) -> bool:
        self.super_admin_calls.append(user_id)
        await self._maybe_fail()
        return user_id in self.super_admins

    async def set_tenant_context(self, tenant_id: str) -> None:
        self.tenant_context_calls.append(tenant_id)
        if self.fail_set_tenant_with is not None:
            raise self.fail_set_tenant_with
        self.session_tenant = tenant_id

    async def has_tenant_membership(self, user_id: str, tenant_id: str) -> bool:
        self.membership_calls.append((user_id, tenant_id))
        await self._maybe_fail()
        return (user_id, tenant_id) in self.memberships

    async def get_role_user_ids(self, role_id: str) -> List[str]:
        await self._maybe_fail()
        return list(self.role_members.get(role_id, []))


class RecordingEmitter:
    def __init__(self, fail: bool = False):
        self.events: List[AuditEvent] = []
        self.fail = fail

    async def emit(self, event: AuditEvent) -> None:
        if self.fail:
            raise RuntimeError("audit sink down")
        self.events.append(event)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def emitter():
    return RecordingEmitter()


@pytest.fixture
def resolver(backend, emitter, clock):
    """Resolver over the fake backend with a 300s TTL and a short backend timeout"""
    return PermissionResolver(
        backend,
        cache=PermissionCache(default_ttl=300, max_entries=1000, clock=clock),
        audit=AuditDispatcher(emitter),
        timeout=0.2,
        ttl=300,
        super_admin_ttl=60,
    )


class FakeAuthService:
    def __init__(self):
        self.logged_out: List[str] = []

    def logout(self, token: str) -> bool:
        self.logged_out.append(token)
        return True


@pytest.fixture
def auth_service():
    return FakeAuthService()


@pytest.fixture
def client(backend, emitter, auth_service):
    """FastAPI test client wired to the fake backend. The caller is taken from X-Test-User."""

    def override_current_user(request: Request, token: str = Depends(get_current_token)) -> Dict:
        user_id = request.headers.get("X-Test-User", "u2")
        return {"id": user_id, "email": f"{user_id}@example.com"}

    config = Settings(
        supabase_url="",
        supabase_key="",
        backend_timeout_seconds=0.2,
        cache_sweep_interval_seconds=0,
    )
    app.state.authz = build_components(backend, emitter, config=config)
    app.dependency_overrides[get_current_user_id] = override_current_user
    app.dependency_overrides[get_auth_service] = lambda: auth_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.authz = None
