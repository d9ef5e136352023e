from pydantic import BaseModel
from typing import Optional


class TenantSwitchRequest(BaseModel):
    tenant_id: str


class TenantContextResponse(BaseModel):
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None


class TenantSwitchResponse(BaseModel):
    success: bool
    tenant_id: Optional[str] = None
    message: str
