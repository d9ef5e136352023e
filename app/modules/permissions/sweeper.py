import asyncio
import logging
from typing import Optional, TYPE_CHECKING
from app.modules.permissions.resolver import PermissionResolver

if TYPE_CHECKING:
    from app.modules.tenants.registry import SessionRegistry

logger = logging.getLogger(__name__)


def sweep_expired_permissions(resolver: PermissionResolver) -> int:
    """Drop expired cache entries so memory does not wait on lazy eviction"""
    try:
        removed = resolver.sweep_expired()
        if removed:
            logger.debug(f"Swept {removed} expired permission cache entries")
        return removed
    except Exception as e:
        logger.error(f"Error sweeping permission cache: {str(e)}")
        return 0


def sweep_idle_sessions(sessions: "SessionRegistry") -> int:
    try:
        return len(sessions.sweep_idle())
    except Exception as e:
        logger.error(f"Error sweeping idle sessions: {str(e)}")
        return 0


async def cache_sweeper_loop(
    resolver: PermissionResolver,
    interval_seconds: float,
    sessions: Optional["SessionRegistry"] = None,
):
    """Background task that periodically removes expired permission cache entries and idle sessions"""
    while True:
        await asyncio.sleep(interval_seconds)
        sweep_expired_permissions(resolver)
        if sessions is not None:
            sweep_idle_sessions(sessions)
