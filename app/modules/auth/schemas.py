from pydantic import BaseModel
from typing import Optional


class MeResponse(BaseModel):
    id: str
    email: Optional[str] = None
    is_super_admin: bool = False
    tenant_id: Optional[str] = None
