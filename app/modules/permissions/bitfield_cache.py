"""
Memory-bounded permission cache.

Keeps one entry per (user, tenant, resource_type, resource_id) instead of one
per action. Each entry holds two bit masks over the Action enum: `known` marks
actions whose outcome has been resolved and `granted` holds the outcomes.

An entry's expiry is fixed when the entry is created; bits added later share
it, so no bit is ever served past the TTL measured from the entry's birth.
"""
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from app.config import settings
from app.modules.permissions.keys import resource_key
from app.modules.permissions.schemas import Action, PermissionCheckRequest

logger = logging.getLogger(__name__)


@dataclass
class BitfieldEntry:
    known: int
    granted: int
    expires_at: float

    def actions(self) -> Dict[Action, bool]:
        return {a: bool(self.granted & a.bit) for a in Action if self.known & a.bit}


class ActionBitfieldCache:
    def __init__(
        self,
        default_ttl: Optional[float] = None,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = settings.permission_cache_ttl_seconds if default_ttl is None else default_ttl
        self.max_entries = settings.permission_cache_max_entries if max_entries is None else max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, BitfieldEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _live_entry(self, key: str) -> Optional[BitfieldEntry]:
        # Caller holds the lock
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def get(self, request: PermissionCheckRequest) -> Optional[bool]:
        bit = request.action.bit
        with self._lock:
            entry = self._live_entry(resource_key(request))
            if entry is None or not entry.known & bit:
                self._misses += 1
                return None
            self._hits += 1
            return bool(entry.granted & bit)

    def set(self, request: PermissionCheckRequest, value: bool, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        key = resource_key(request)
        bit = request.action.bit
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                while self.max_entries > 0 and len(self._entries) >= self.max_entries:
                    self._entries.popitem(last=False)
                    self._evictions += 1
                entry = BitfieldEntry(known=0, granted=0, expires_at=self._clock() + ttl)
                self._entries[key] = entry
            entry.known |= bit
            if value:
                entry.granted |= bit
            else:
                entry.granted &= ~bit

    def decode(self, request: PermissionCheckRequest) -> Dict[Action, bool]:
        """All resolved actions for the request's (user, tenant, resource_type, resource_id)"""
        with self._lock:
            entry = self._live_entry(resource_key(request))
            return entry.actions() if entry else {}

    def invalidate_action(self, request: PermissionCheckRequest) -> bool:
        """Forget one action's outcome, keeping the other bits of the entry"""
        key = resource_key(request)
        bit = request.action.bit
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or not entry.known & bit:
                return False
            entry.known &= ~bit
            entry.granted &= ~bit
            if not entry.known:
                del self._entries[key]
            return True

    def invalidate(self, prefix: str) -> int:
        with self._lock:
            doomed: List[str] = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} bitfield entries with prefix {prefix}")
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Bitfield permission cache cleared")

    def sweep_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._entries),
                "cached_actions": sum(bin(e.known).count("1") for e in self._entries.values()),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": (self._hits / total) if total else 0.0,
            }
