"""
Activity log schemas.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class ActivityLogResponse(BaseModel):
    """One audit entry of a staff action on a client."""
    id: str
    staff_id: Optional[str] = None
    staff_name: Optional[str] = None
    client_id: str
    client_name: Optional[str] = None
    sheet_id: Optional[str] = None
    sheet_name: Optional[str] = None
    action_type: str
    field_changed: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    timestamp: Optional[datetime] = None

    class Config:
        from_attributes = True
