"""
Sheet schemas for API validation.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class SheetCreate(BaseModel):
    name: str
    description: Optional[str] = None


class SheetResponse(BaseModel):
    """Schema for sheet response."""
    id: str
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SheetAccessGrant(BaseModel):
    staff_id: str
    granted_by: Optional[str] = None


class SheetAccessResponse(BaseModel):
    """A staff member's grant on one sheet."""
    id: str
    staff_id: str
    sheet_id: str
    granted_by: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
