"""Pydantic schemas for leads."""
from datetime import datetime
from typing import Optional
from uuid import UUID
from pydantic import EmailStr, Field

from affiliate_hub.models.lead import LeadStatus, LeadType
from affiliate_hub.schemas.base import BaseCreateSchema, BaseResponseSchema


class LeadCreate(BaseCreateSchema):
    """Schema for submitting a lead."""
    lead_type: LeadType
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(..., min_length=7, max_length=20)
    address: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    zip_code: Optional[str] = Field(None, max_length=10)
    notes: Optional[str] = None


class LeadStatusUpdate(BaseCreateSchema):
    """Admin status change."""
    status: LeadStatus


class LeadResponse(BaseResponseSchema):
    """Response schema for a lead."""
    id: UUID
    lead_id: str
    owner_affiliate_id: UUID
    status: str
    lead_type: str
    first_name: str
    last_name: str
    email: str
    phone: str
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
