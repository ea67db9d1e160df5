"""
Pydantic schemas for request/response validation.
"""
from .crm_client import (
    CRMClientResponse, CRMClientListResponse, CRMClientStats,
    FieldUpdateRequest, CommentCreateRequest, CRMOptionsResponse, OptionInfo,
)
from .csv_import import CSVPreviewResponse, CSVImportRequest, CSVImportResponse
from .sheet import SheetCreate, SheetResponse
from .activity import ActivityLogResponse

__all__ = [
    "CRMClientResponse", "CRMClientListResponse", "CRMClientStats",
    "FieldUpdateRequest", "CommentCreateRequest", "CRMOptionsResponse", "OptionInfo",
    "CSVPreviewResponse", "CSVImportRequest", "CSVImportResponse",
    "SheetCreate", "SheetResponse",
    "ActivityLogResponse",
]
