from app.modules.tenants.context import TenantContext, TenantContextHolder, TenantSwitchResult
from app.modules.tenants.registry import SessionRegistry

__all__ = ["TenantContext", "TenantContextHolder", "TenantSwitchResult", "SessionRegistry"]
