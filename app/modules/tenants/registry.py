"""Thread-safe registry of session_id -> TenantContextHolder."""
import threading
import logging
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional

from app.config import settings
from app.modules.tenants.context import TenantContextHolder

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Holders are kept in least-recently-used order. Sessions idle for longer
    than idle_ttl are dropped by sweep_idle, and the least recently used one
    is dropped when max_sessions is reached.
    """

    def __init__(
        self,
        factory: Callable[[], TenantContextHolder],
        max_sessions: Optional[int] = None,
        idle_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._factory = factory
        self.max_sessions = settings.session_max_entries if max_sessions is None else max_sessions
        self.idle_ttl = settings.session_idle_ttl_seconds if idle_ttl is None else idle_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._holders: "OrderedDict[str, TenantContextHolder]" = OrderedDict()
        self._last_seen: Dict[str, float] = {}

    def get_or_create(self, session_id: str) -> TenantContextHolder:
        with self._lock:
            holder = self._holders.get(session_id)
            if holder is None:
                while self.max_sessions > 0 and len(self._holders) >= self.max_sessions:
                    evicted, _ = self._holders.popitem(last=False)
                    self._last_seen.pop(evicted, None)
                    logger.info(f"Session registry full, dropped least recently used session {evicted}")
                holder = self._factory()
                self._holders[session_id] = holder
                logger.debug(f"Created tenant context for session {session_id}")
            else:
                self._holders.move_to_end(session_id)
            self._last_seen[session_id] = self._clock()
            return holder

    def get(self, session_id: str) -> Optional[TenantContextHolder]:
        with self._lock:
            return self._holders.get(session_id)

    async def remove(self, session_id: str) -> None:
        """Clear and forget a session's context (logout)"""
        with self._lock:
            holder = self._holders.pop(session_id, None)
            self._last_seen.pop(session_id, None)
        if holder is not None:
            await holder.clear_context()
            logger.debug(f"Removed tenant context for session {session_id}")

    def sweep_idle(self) -> List[str]:
        """Forget sessions not used for idle_ttl seconds. Returns the dropped session ids."""
        if self.idle_ttl <= 0:
            return []
        cutoff = self._clock() - self.idle_ttl
        with self._lock:
            idle = [sid for sid, seen in self._last_seen.items() if seen <= cutoff]
            for sid in idle:
                self._holders.pop(sid, None)
                del self._last_seen[sid]
        if idle:
            logger.debug(f"Dropped {len(idle)} idle tenant contexts")
        return idle

    def __len__(self) -> int:
        with self._lock:
            return len(self._holders)
