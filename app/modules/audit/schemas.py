from datetime import datetime, timezone
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any


class AuditEvent(BaseModel):
    """Record of one permission-check outcome.

    Fixed fields cover everything the resolver knows; `extra` carries anything
    else a caller wants attached (request id, client ip, ...).
    """

    event_type: str = "authorization"
    user_id: str
    tenant_id: Optional[str] = None
    resource_type: str
    action: str
    resource_id: Optional[str] = None
    outcome: str  # granted | denied | error
    cached: bool = False
    super_admin: bool = False
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    extra: Dict[str, Any] = Field(default_factory=dict)

    def details(self) -> Dict[str, Any]:
        """Payload stored in the audit log's JSON details column"""
        details = {
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "outcome": self.outcome,
            "cached": self.cached,
            "super_admin": self.super_admin,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.error:
            details["error"] = self.error
        if self.extra:
            details["extra"] = self.extra
        return details
