"""
Pydantic schemas for service responses
"""

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field

from .models import Identity, Role


class IdentityView(BaseModel):
    """Identity as handed to callers, without credential material"""

    model_config = ConfigDict(frozen=True)

    id: str
    cluster_id: str
    display_handle: str
    display_name: str
    role: Role
    created_at: datetime
    parent_id: Optional[str] = None
    active: bool = True

    @classmethod
    def from_identity(cls, identity: Identity) -> 'IdentityView':
        return cls.model_validate(identity.to_public_dict())


class ServiceResponse(BaseModel):
    """{success, data?, error?} envelope returned by every service operation"""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    success: bool
    data: Any = None
    error: Optional[str] = Field(default=None, description="User-facing error text")

    @classmethod
    def ok(cls, data: Any = None) -> 'ServiceResponse':
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> 'ServiceResponse':
        return cls(success=False, error=error)
