import asyncio
import logging
from typing import Optional, Protocol, Set

from supabase import Client

from app.core.exceptions import AuditEmissionError
from app.modules.audit.schemas import AuditEvent

logger = logging.getLogger(__name__)


class AuditEmitter(Protocol):
    async def emit(self, event: AuditEvent) -> None:
        ...


class SupabaseAuditEmitter:
    """Writes audit events through the log_audit_event RPC"""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def _emit_sync(self, event: AuditEvent) -> Optional[str]:
        try:
            result = self.supabase.rpc("log_audit_event", {
                "p_event_type": event.event_type,
                "p_action": event.action,
                "p_resource_type": event.resource_type,
                "p_resource_id": event.resource_id,
                "p_details": event.details(),
            }).execute()
            return result.data
        except Exception as e:
            raise AuditEmissionError(f"log_audit_event failed: {e}") from e

    async def emit(self, event: AuditEvent) -> None:
        await asyncio.to_thread(self._emit_sync, event)


class LoggingAuditEmitter:
    """Emitter used when no audit sink is configured; records events in the application log"""

    async def emit(self, event: AuditEvent) -> None:
        logger.info(
            f"audit {event.event_type}: user={event.user_id} tenant={event.tenant_id} "
            f"{event.action} {event.resource_type}/{event.resource_id or '*'} -> {event.outcome}"
        )


class AuditDispatcher:
    """Fire-and-forget delivery of audit events.

    `dispatch` never raises and never waits for the emitter. Emission failures
    are logged here and go no further.
    """

    def __init__(self, emitter: AuditEmitter, enabled: bool = True):
        self.emitter = emitter
        self.enabled = enabled
        self._pending: Set[asyncio.Task] = set()
        self.failures = 0

    def dispatch(self, event: AuditEvent) -> None:
        if not self.enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, dropping audit event for user {event.user_id}")
            return
        task = loop.create_task(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: AuditEvent) -> None:
        try:
            await self.emitter.emit(event)
        except AuditEmissionError as e:
            self.failures += 1
            logger.warning(f"Audit emission failed: {e}")
        except Exception as e:
            self.failures += 1
            logger.warning(f"Unexpected error emitting audit event: {e}")

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for all in-flight events (used on shutdown)"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
