"""
Construction of the permission core.

Nothing here is a process-wide singleton: the application builds one
`AuthzComponents` at startup and keeps it in `app.state`; tests build their
own around fake backends.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from app.config import Settings, settings as default_settings
from app.modules.audit.service import AuditDispatcher, AuditEmitter, LoggingAuditEmitter
from app.modules.permissions.backend import AuthorizationBackend
from app.modules.permissions.bitfield_cache import ActionBitfieldCache
from app.modules.permissions.cache import PermissionCache
from app.modules.permissions.resolver import PermissionResolver
from app.modules.tenants.context import TenantContextHolder
from app.modules.tenants.registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass
class AuthzComponents:
    resolver: PermissionResolver
    sessions: SessionRegistry
    audit: AuditDispatcher


def build_components(
    backend: AuthorizationBackend,
    audit_emitter: Optional[AuditEmitter] = None,
    config: Optional[Settings] = None,
) -> AuthzComponents:
    config = config or default_settings
    cache = PermissionCache(
        default_ttl=config.permission_cache_ttl_seconds,
        max_entries=config.permission_cache_max_entries,
    )
    bitfield_cache = None
    if config.use_bitfield_cache:
        bitfield_cache = ActionBitfieldCache(
            default_ttl=config.permission_cache_ttl_seconds,
            max_entries=config.permission_cache_max_entries,
        )
    audit = AuditDispatcher(audit_emitter or LoggingAuditEmitter(), enabled=config.audit_enabled)
    resolver = PermissionResolver(
        backend,
        cache=cache,
        audit=audit,
        bitfield_cache=bitfield_cache,
        timeout=config.backend_timeout_seconds,
        ttl=config.permission_cache_ttl_seconds,
        super_admin_ttl=config.super_admin_cache_ttl_seconds,
    )
    sessions = SessionRegistry(
        lambda: TenantContextHolder(backend, timeout=config.backend_timeout_seconds),
        max_sessions=config.session_max_entries,
        idle_ttl=config.session_idle_ttl_seconds,
    )
    logger.info(
        f"Permission core ready (cache={'bitfield' if bitfield_cache else 'entries'}, "
        f"ttl={config.permission_cache_ttl_seconds}s, timeout={config.backend_timeout_seconds}s)"
    )
    return AuthzComponents(resolver=resolver, sessions=sessions, audit=audit)
