"""
Import router for loading CRM clients from CSV or Excel spreadsheet exports.
"""
import io
import logging
from datetime import date, datetime, time
from typing import Any, List, Optional, Tuple

import openpyxl
from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Query

from ..config import get_settings
from ..dependencies import get_repository, raise_for_error
from ..schemas.csv_import import CSVPreviewResponse, CSVImportRequest, CSVImportResponse
from ..services.crm_repository import CRMRepository
from ..services.csv_import_service import ImportDraft, ImportTarget, execute_import

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/crm/import", tags=["crm-import"])

ALLOWED_EXTENSIONS = (".csv", ".xlsx", ".xls")
EXCEL_EXTENSIONS = (".xlsx", ".xls")


def decode_upload(content: bytes) -> str:
    """Decode uploaded bytes as UTF-8, dropping a leading BOM."""
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=400,
            detail="File encoding not supported. Please use UTF-8.",
        )


def cell_text(value: Any) -> str:
    """Render a worksheet cell as the text a CSV export would carry."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        # Date-only cells come back as midnight datetimes
        return value.date().isoformat() if value.time() == time.min else value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def read_workbook_rows(content: bytes, worksheet: Optional[str] = None) -> Tuple[List[str], str, List[List[str]]]:
    """
    Read one worksheet of an Excel file as rows of cell text.

    Returns the workbook's worksheet names, the name of the worksheet read
    (the first one unless another is requested) and its rows.
    """
    try:
        wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise HTTPException(
            status_code=400,
            detail=f"Could not open Excel file: {str(e)}",
        )

    try:
        names = list(wb.sheetnames)
        if not names:
            raise HTTPException(status_code=400, detail="Excel file has no worksheets")
        selected = worksheet or names[0]
        if selected not in names:
            raise HTTPException(status_code=400, detail=f"Worksheet '{selected}' not found")
        rows = [[cell_text(value) for value in row] for row in wb[selected].iter_rows(values_only=True)]
    finally:
        wb.close()

    # Read-only worksheets may report formatted but empty trailing rows
    while rows and not any(rows[-1]):
        rows.pop()
    return names, selected, rows


@router.post("/preview", response_model=CSVPreviewResponse)
async def preview_csv_import(
    file: UploadFile = File(...),
    has_headers: bool = Query(True),
    worksheet: Optional[str] = Query(None),
):
    """
    Upload a CSV or Excel file and preview the import.
    Returns the parsed rows, the detected column mapping and sample records.
    For Excel files, worksheet picks the sheet to read (the first by default).
    """
    filename = (file.filename or "").lower()
    if not filename.endswith(ALLOWED_EXTENSIONS):
        raise HTTPException(status_code=400, detail="File must be CSV or Excel (.csv, .xlsx, .xls)")

    content = await file.read()
    draft = ImportDraft(has_headers=has_headers)
    worksheets: List[str] = []
    selected: Optional[str] = None

    if filename.endswith(EXCEL_EXTENSIONS):
        worksheets, selected, rows = read_workbook_rows(content, worksheet)
        draft.load(rows)
    else:
        draft.load_text(decode_upload(content))

    if not draft.rows:
        raise HTTPException(status_code=400, detail="File is empty or contains no data rows")

    records = draft.build_records()
    logger.info(f"Previewed {file.filename}: {len(draft.rows)} rows, {len(records)} valid clients")

    return CSVPreviewResponse(
        total_rows=len(draft.data_rows),
        column_count=max(len(row) for row in draft.rows),
        has_headers=draft.has_headers,
        headers=draft.headers,
        rows=draft.rows,
        column_mapping=draft.column_mapping,
        preview_records=records[:get_settings().import_preview_rows],
        valid_records=len(records),
        worksheets=worksheets,
        worksheet=selected,
    )


@router.post("/execute", response_model=CSVImportResponse)
async def execute_csv_import(
    request: CSVImportRequest,
    repository: CRMRepository = Depends(get_repository),
):
    """
    Execute the import into an existing sheet or a new one.
    Expects the parsed rows and column mapping from the preview step.
    """
    if not request.rows:
        raise HTTPException(status_code=400, detail="No rows to import")

    draft = ImportDraft(has_headers=request.has_headers)
    draft.rows = request.rows
    for key, field_name in request.column_mapping.items():
        if key.isdigit():
            draft.set_column(int(key), field_name)

    result = await execute_import(
        repository,
        draft,
        ImportTarget(sheet_id=request.sheet_id, sheet_name=request.sheet_name),
    )
    raise_for_error(result)

    summary = result.value
    return CSVImportResponse(
        sheet=summary.sheet,
        total_processed=summary.total_processed,
        imported=summary.imported,
        duplicates_skipped=summary.duplicates_skipped,
        clients=summary.clients,
    )
