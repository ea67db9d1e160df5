"""
CRM client schemas for API validation.
"""
from datetime import date, datetime
from typing import Optional, List, Dict
from pydantic import BaseModel


class CallingCommentEntry(BaseModel):
    """One entry of a client's calling comment history."""
    comment: str
    date: str
    addedBy: Optional[str] = None


class CRMClientResponse(BaseModel):
    """Schema for CRM client response."""
    id: str
    client_name: str
    customer_number: Optional[str] = None
    lead_stage: str
    lead_type: str
    deal_status: str
    location_category: Optional[str] = None
    expected_visit_date: Optional[date] = None
    calling_comment: Optional[str] = None
    calling_comment_history: Optional[List[CallingCommentEntry]] = None
    admin_notes: Optional[str] = None
    sheet_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CRMClientStats(BaseModel):
    total: int
    hot: int
    warm: int
    cold: int
    locked: int


class CRMClientListResponse(BaseModel):
    """Paginated, filtered client list with stats over the whole sheet."""
    total: int
    page: int
    page_size: int
    total_pages: int
    stats: CRMClientStats
    locations: List[str]
    clients: List[CRMClientResponse]


class FieldUpdateRequest(BaseModel):
    """Inline edit of one client field."""
    field: str
    value: Optional[str] = None


class CommentCreateRequest(BaseModel):
    comment: str


class OptionInfo(BaseModel):
    """An enumeration value with display info."""
    value: str
    label: str
    color: str
    order: int


class CRMOptionsResponse(BaseModel):
    """Enumerations offered by the CRM grid."""
    lead_stages: List[OptionInfo]
    staff_lead_stages: List[OptionInfo]
    lead_types: List[OptionInfo]
    deal_statuses: List[OptionInfo]
    import_fields: Dict[str, str]


class DeleteResponse(BaseModel):
    deleted: int
    detail: Optional[str] = None
