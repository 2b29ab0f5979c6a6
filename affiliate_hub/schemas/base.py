"""
Base Schema Classes for Pydantic Models

RULE: All response schemas that use `from_attributes=True` MUST inherit from BaseResponseSchema.
"""

from datetime import datetime
from typing import Generic, List, TypeVar
from uuid import UUID
from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Features:
    - Automatically handles UUID -> string serialization in JSON
    - Enables from_attributes for ORM compatibility
    - Consistent datetime serialization

    Usage:
        class LeadResponse(BaseResponseSchema):
            id: UUID
            lead_id: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        json_encoders={
            UUID: str,
            datetime: lambda v: v.isoformat() if v else None,
        },
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    No from_attributes needed since these don't read from ORM.
    """
    model_config = ConfigDict(
        # Allow extra fields to be ignored (forward compatibility)
        extra='ignore',
    )


T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """Page of items with the total count."""
    items: List[T]
    total: int
    page: int
    size: int
    pages: int
