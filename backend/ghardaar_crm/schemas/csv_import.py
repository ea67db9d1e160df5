"""
Import schemas for API validation.
"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel

from .crm_client import CRMClientResponse
from .sheet import SheetResponse


class CSVPreviewResponse(BaseModel):
    """Response for CSV preview endpoint."""
    total_rows: int
    column_count: int
    has_headers: bool
    headers: List[str]
    rows: List[List[str]]
    column_mapping: Dict[str, str]
    preview_records: List[Dict[str, Any]]
    valid_records: int
    worksheets: List[str] = []  # Excel uploads only
    worksheet: Optional[str] = None


class CSVImportRequest(BaseModel):
    """Request to execute CSV import."""
    rows: List[List[str]]
    column_mapping: Dict[str, str]
    has_headers: bool = True
    sheet_id: Optional[str] = None
    sheet_name: Optional[str] = None


class CSVImportResponse(BaseModel):
    """Response for CSV import execution."""
    sheet: SheetResponse
    total_processed: int
    imported: int
    duplicates_skipped: int
    clients: List[CRMClientResponse]
