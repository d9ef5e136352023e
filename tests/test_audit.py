import asyncio
import pytest
from unittest.mock import MagicMock

from app.core.exceptions import AuditEmissionError
from app.modules.audit.schemas import AuditEvent
from app.modules.audit.service import AuditDispatcher, LoggingAuditEmitter, SupabaseAuditEmitter


def make_event(**overrides):
    fields = {
        "user_id": "u1",
        "tenant_id": "t1",
        "resource_type": "documents",
        "action": "View",
        "outcome": "granted",
    }
    fields.update(overrides)
    return AuditEvent(**fields)


class TestAuditEvent:
    def test_details_payload(self):
        details = make_event(extra={"request_id": "r-1"}).details()
        assert details["tenant_id"] == "t1"
        assert details["outcome"] == "granted"
        assert details["cached"] is False
        assert details["extra"] == {"request_id": "r-1"}
        assert "error" not in details

    def test_error_included_when_present(self):
        details = make_event(outcome="error", error="timed out").details()
        assert details["error"] == "timed out"

    def test_timestamp_is_utc(self):
        assert make_event().timestamp.tzinfo is not None


class TestAuditDispatcher:
    """Fire-and-forget audit delivery"""

    @pytest.mark.asyncio
    async def test_dispatch_then_drain(self, emitter):
        dispatcher = AuditDispatcher(emitter)
        dispatcher.dispatch(make_event())
        dispatcher.dispatch(make_event(action="Delete", outcome="denied"))
        await dispatcher.drain()
        assert [e.action for e in emitter.events] == ["View", "Delete"]
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_failures_counted_not_raised(self, emitter):
        emitter.fail = True
        dispatcher = AuditDispatcher(emitter)
        dispatcher.dispatch(make_event())
        await dispatcher.drain()
        assert dispatcher.failures == 1

    @pytest.mark.asyncio
    async def test_disabled_dispatcher_emits_nothing(self, emitter):
        dispatcher = AuditDispatcher(emitter, enabled=False)
        dispatcher.dispatch(make_event())
        await dispatcher.drain()
        assert emitter.events == []

    def test_dispatch_without_running_loop_drops_event(self, emitter):
        dispatcher = AuditDispatcher(emitter)
        dispatcher.dispatch(make_event())
        assert dispatcher.pending == 0
        assert emitter.events == []

    @pytest.mark.asyncio
    async def test_dispatch_returns_before_emit_finishes(self):
        release = asyncio.Event()
        delivered = []

        class BlockingEmitter:
            async def emit(self, event):
                await release.wait()
                delivered.append(event)

        dispatcher = AuditDispatcher(BlockingEmitter())
        dispatcher.dispatch(make_event())
        await asyncio.sleep(0)
        assert delivered == []
        assert dispatcher.pending == 1
        release.set()
        await dispatcher.drain()
        assert len(delivered) == 1

    @pytest.mark.asyncio
    async def test_logging_emitter(self, caplog):
        dispatcher = AuditDispatcher(LoggingAuditEmitter())
        with caplog.at_level("INFO"):
            dispatcher.dispatch(make_event())
            await dispatcher.drain()
        assert "user=u1" in caplog.text


class TestSupabaseAuditEmitter:
    @pytest.mark.asyncio
    async def test_calls_log_audit_event_rpc(self):
        supabase = MagicMock()
        emitter = SupabaseAuditEmitter(supabase)
        await emitter.emit(make_event(resource_id="d1"))
        name, params = supabase.rpc.call_args[0]
        assert name == "log_audit_event"
        assert params["p_event_type"] == "authorization"
        assert params["p_action"] == "View"
        assert params["p_resource_type"] == "documents"
        assert params["p_resource_id"] == "d1"
        assert params["p_details"]["outcome"] == "granted"

    @pytest.mark.asyncio
    async def test_rpc_failure_raises_audit_emission_error(self):
        supabase = MagicMock()
        supabase.rpc.return_value.execute.side_effect = RuntimeError("insert failed")
        emitter = SupabaseAuditEmitter(supabase)
        with pytest.raises(AuditEmissionError):
            await emitter.emit(make_event())

    @pytest.mark.asyncio
    async def test_dispatcher_absorbs_supabase_failure(self):
        supabase = MagicMock()
        supabase.rpc.side_effect = RuntimeError("connection reset")
        dispatcher = AuditDispatcher(SupabaseAuditEmitter(supabase))
        dispatcher.dispatch(make_event())
        await dispatcher.drain()
        assert dispatcher.failures == 1
