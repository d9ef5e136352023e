from enum import Enum
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from typing import Optional, List, Dict, Any

from app.core.exceptions import ValidationError


class Action(str, Enum):
    """Closed set of actions a permission can grant. Order defines bitfield positions."""

    VIEW = "View"
    VIEW_ANY = "ViewAny"
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"
    DELETE_ANY = "DeleteAny"
    RESTORE = "Restore"
    EXPORT = "Export"
    IMPORT = "Import"
    BULK_EDIT = "BulkEdit"
    BULK_DELETE = "BulkDelete"
    MANAGE = "Manage"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value.lower() == normalized:
                    return member
        return None

    @property
    def bit(self) -> int:
        return 1 << list(Action).index(self)


def _non_blank(value: Optional[str], field_name: str) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError(f"{field_name} must not be blank")
    return value


class PermissionCheckRequest(BaseModel):
    """One permission question: may `user_id` perform `action` on `resource_type` in `tenant_id`?

    `tenant_id=None` is global scope and `resource_id=None` is a collection-level
    check. Both are distinct from any concrete value.
    """

    user_id: str
    resource_type: str
    action: Action
    tenant_id: Optional[str] = None
    resource_id: Optional[str] = None

    class Config:
        frozen = True

    @field_validator("user_id", "resource_type")
    @classmethod
    def _required_not_blank(cls, value: str, info):
        return _non_blank(value, info.field_name)

    @field_validator("tenant_id", "resource_id")
    @classmethod
    def _optional_not_blank(cls, value: Optional[str], info):
        return _non_blank(value, info.field_name)

    @field_validator("action", mode="before")
    @classmethod
    def _normalize_action(cls, value):
        if isinstance(value, str):
            try:
                return Action(value)
            except ValueError:
                raise ValueError(f"unknown action '{value}'")
        return value

    @classmethod
    def build(cls, **fields) -> "PermissionCheckRequest":
        """Construct a request, converting pydantic errors into ValidationError"""
        try:
            return cls(**fields)
        except PydanticValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
                for err in e.errors()
            )
            raise ValidationError(f"Invalid permission request: {problems}") from e

    @property
    def is_collection_check(self) -> bool:
        return self.resource_id is None

    @property
    def is_global(self) -> bool:
        return self.tenant_id is None


# HTTP payloads

class PermissionCheckBody(BaseModel):
    resource_type: str
    action: str
    tenant_id: Optional[str] = None
    resource_id: Optional[str] = None


class PermissionCheckResponse(BaseModel):
    allowed: bool
    user_id: str
    tenant_id: Optional[str] = None
    resource_type: str
    action: Action
    resource_id: Optional[str] = None


class BatchPermissionCheckBody(BaseModel):
    checks: List[PermissionCheckBody] = Field(..., min_length=1, max_length=100)


class BatchPermissionCheckResponse(BaseModel):
    results: List[PermissionCheckResponse]


class CacheInvalidateBody(BaseModel):
    user_id: str
    tenant_id: Optional[str] = None


class CacheInvalidateResponse(BaseModel):
    user_id: str
    tenant_id: Optional[str] = None
    removed: int


class CacheStatsResponse(BaseModel):
    backend: str
    stats: Dict[str, Any]


class RoleInvalidateBody(BaseModel):
    role_id: str


class RoleInvalidateResponse(BaseModel):
    role_id: str
    user_ids: List[str]


class CacheWarmBody(BaseModel):
    user_ids: List[str] = Field(..., min_length=1, max_length=100)
    resource_types: List[str] = Field(..., min_length=1, max_length=20)
    actions: List[str] = Field(..., min_length=1, max_length=len(Action))
    tenant_id: Optional[str] = None


class CacheWarmResponse(BaseModel):
    requested: int
    warmed: int
