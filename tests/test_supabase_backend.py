import pytest
from unittest.mock import MagicMock, call

from app.modules.permissions.backend import SupabaseAuthorizationBackend


@pytest.fixture
def supabase():
    client = MagicMock()
    client.rpc.return_value.execute.return_value.data = True
    return client


class TestSupabaseAuthorizationBackend:
    """RPC names and parameters sent to the database"""

    @pytest.mark.asyncio
    async def test_collection_check_sets_tenant_then_calls_check_user_permission(self, supabase):
        backend = SupabaseAuthorizationBackend(supabase)
        assert await backend.check_permission("u1", "t1", "documents", "View") is True
        assert supabase.rpc.call_args_list == [
            call("set_tenant_context", {"tenant_id": "t1"}),
            call("check_user_permission", {
                "p_user_id": "u1",
                "p_action": "View",
                "p_resource": "documents",
                "p_tenant_id": "t1",
            }),
        ]

    @pytest.mark.asyncio
    async def test_instance_check_calls_resource_specific_rpc(self, supabase):
        backend = SupabaseAuthorizationBackend(supabase)
        await backend.check_permission("u1", "t1", "documents", "Delete", "d1")
        name, params = supabase.rpc.call_args[0]
        assert name == "check_resource_specific_permission"
        assert params["p_resource_id"] == "d1"

    @pytest.mark.asyncio
    async def test_global_check_does_not_set_tenant(self, supabase):
        backend = SupabaseAuthorizationBackend(supabase)
        await backend.check_permission("u1", None, "tenants", "ViewAny")
        names = [c[0][0] for c in supabase.rpc.call_args_list]
        assert names == ["check_user_permission"]

    @pytest.mark.asyncio
    async def test_denied_when_rpc_returns_nothing(self, supabase):
        supabase.rpc.return_value.execute.return_value.data = None
        backend = SupabaseAuthorizationBackend(supabase)
        assert await backend.check_permission("u1", "t1", "documents", "View") is False

    @pytest.mark.asyncio
    async def test_is_super_admin(self, supabase):
        backend = SupabaseAuthorizationBackend(supabase)
        assert await backend.is_super_admin("u1") is True
        supabase.rpc.assert_called_with("is_super_admin", {"p_user_id": "u1"})

    @pytest.mark.asyncio
    async def test_membership_queries_user_roles(self, supabase):
        query = supabase.table.return_value.select.return_value.eq.return_value.eq.return_value.limit.return_value
        query.execute.return_value.data = [{"id": "r1"}]
        backend = SupabaseAuthorizationBackend(supabase)
        assert await backend.has_tenant_membership("u1", "t1") is True
        supabase.table.assert_called_with("user_roles")

    @pytest.mark.asyncio
    async def test_no_membership_rows(self, supabase):
        query = supabase.table.return_value.select.return_value.eq.return_value.eq.return_value.limit.return_value
        query.execute.return_value.data = []
        backend = SupabaseAuthorizationBackend(supabase)
        assert await backend.has_tenant_membership("u1", "t9") is False

    @pytest.mark.asyncio
    async def test_errors_propagate(self, supabase):
        supabase.rpc.return_value.execute.side_effect = RuntimeError("boom")
        backend = SupabaseAuthorizationBackend(supabase)
        with pytest.raises(RuntimeError):
            await backend.is_super_admin("u1")

    @pytest.mark.asyncio
    async def test_role_user_ids_from_user_roles(self, supabase):
        query = supabase.table.return_value.select.return_value.eq.return_value
        query.execute.return_value.data = [{"user_id": "u1"}, {"user_id": "u2"}]
        backend = SupabaseAuthorizationBackend(supabase)
        assert await backend.get_role_user_ids("editor") == ["u1", "u2"]
        supabase.table.assert_called_with("user_roles")
        supabase.table.return_value.select.assert_called_with("user_id")
        supabase.table.return_value.select.return_value.eq.assert_called_with("role_id", "editor")
