"""
CRM clients router: listing, inline edits, comments, deletion and export.
"""
import logging
import math
from datetime import datetime
from typing import Optional, Dict, Any, List

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from ..config import get_settings
from ..dependencies import get_repository, get_current_staff, raise_for_error
from ..models.crm_client import (
    ADMIN_LEAD_STAGE_CONFIG, STAFF_LEAD_STAGE_CONFIG, LEAD_TYPE_CONFIG, DEAL_STATUS_CONFIG,
)
from ..schemas.crm_client import (
    CRMClientResponse, CRMClientListResponse, FieldUpdateRequest,
    CommentCreateRequest, CRMOptionsResponse, OptionInfo, DeleteResponse,
)
from ..services.client_store import filter_clients, client_stats, unique_locations
from ..services.crm_client_service import (
    get_client, update_client_field, add_calling_comment, toggle_deal_status,
    delete_client, delete_all_clients, export_clients_csv,
    accessible_sheet_ids, check_sheet_access,
)
from ..services.crm_repository import CRMRepository, CLIENTS_TABLE
from ..services.csv_import_service import IMPORT_FIELD_LABELS

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/crm", tags=["crm-clients"])


def _options(config: Dict[Any, Dict[str, Any]]) -> List[OptionInfo]:
    options = [
        OptionInfo(value=value.value, label=info["label"], color=info["color"], order=info["order"])
        for value, info in config.items()
    ]
    return sorted(options, key=lambda x: x.order)


async def _load_clients(
    repository: CRMRepository,
    sheet_id: Optional[str],
    staff: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """Clients of one sheet, or of every sheet the acting user may see."""
    if sheet_id:
        raise_for_error(await check_sheet_access(repository, sheet_id, staff))
        return await repository.select(CLIENTS_TABLE, {"sheet_id": sheet_id})

    sheet_ids = await accessible_sheet_ids(repository, staff)
    if sheet_ids is None:
        return await repository.select(CLIENTS_TABLE)
    if not sheet_ids:
        return []
    return await repository.select(CLIENTS_TABLE, {"sheet_id": sheet_ids})


async def _load_client(
    repository: CRMRepository,
    client_id: str,
    staff: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Fetch one client; 404 if missing, 403 if its sheet is not granted to the staff member."""
    found = await get_client(repository, client_id)
    raise_for_error(found)
    raise_for_error(await check_sheet_access(repository, found.value.get("sheet_id"), staff))
    return found.value


@router.get("/clients", response_model=CRMClientListResponse)
async def list_clients(
    sheet_id: Optional[str] = None,
    search: Optional[str] = None,
    lead_stage: Optional[str] = None,
    lead_type: Optional[str] = None,
    deal_status: Optional[str] = None,
    location_category: Optional[str] = None,
    page: int = Query(1, ge=1),
    repository: CRMRepository = Depends(get_repository),
    staff: Optional[Dict[str, Any]] = Depends(get_current_staff),
):
    """List clients of a sheet (or all sheets), newest first, with filters and stats."""
    clients = await _load_clients(repository, sheet_id, staff)
    filtered = filter_clients(
        clients,
        search=search,
        lead_stage=lead_stage,
        lead_type=lead_type,
        deal_status=deal_status,
        location_category=location_category,
    )

    page_size = get_settings().crm_page_size
    start = (page - 1) * page_size

    return CRMClientListResponse(
        total=len(filtered),
        page=page,
        page_size=page_size,
        total_pages=max(1, math.ceil(len(filtered) / page_size)),
        stats=client_stats(clients),
        locations=unique_locations(clients),
        clients=filtered[start:start + page_size],
    )


# NOTE: These routes MUST come BEFORE /clients/{client_id}
@router.get("/clients/export")
async def export_clients(
    sheet_id: Optional[str] = None,
    search: Optional[str] = None,
    lead_stage: Optional[str] = None,
    lead_type: Optional[str] = None,
    deal_status: Optional[str] = None,
    location_category: Optional[str] = None,
    repository: CRMRepository = Depends(get_repository),
    staff: Optional[Dict[str, Any]] = Depends(get_current_staff),
):
    """Download the filtered clients as CSV."""
    clients = filter_clients(
        await _load_clients(repository, sheet_id, staff),
        search=search,
        lead_stage=lead_stage,
        lead_type=lead_type,
        deal_status=deal_status,
        location_category=location_category,
    )
    filename = f"crm_clients_{datetime.utcnow().strftime('%Y-%m-%d')}.csv"
    return Response(
        content=export_clients_csv(clients),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/options", response_model=CRMOptionsResponse)
def get_options():
    """Get the CRM enumerations with their labels and colours."""
    return CRMOptionsResponse(
        lead_stages=_options(ADMIN_LEAD_STAGE_CONFIG),
        staff_lead_stages=_options(STAFF_LEAD_STAGE_CONFIG),
        lead_types=_options(LEAD_TYPE_CONFIG),
        deal_statuses=_options(DEAL_STATUS_CONFIG),
        import_fields=IMPORT_FIELD_LABELS,
    )


@router.get("/clients/{client_id}", response_model=CRMClientResponse)
async def read_client(
    client_id: str,
    repository: CRMRepository = Depends(get_repository),
    staff: Optional[Dict[str, Any]] = Depends(get_current_staff),
):
    return await _load_client(repository, client_id, staff)


@router.patch("/clients/{client_id}/fields", response_model=CRMClientResponse)
async def update_field(
    client_id: str,
    request: FieldUpdateRequest,
    repository: CRMRepository = Depends(get_repository),
    staff: Optional[Dict[str, Any]] = Depends(get_current_staff),
):
    """Inline edit of one field; unchanged values are not written or logged."""
    client = await _load_client(repository, client_id, staff)

    result = await update_client_field(repository, client, request.field, request.value, staff=staff)
    raise_for_error(result)
    return result.value


@router.post("/clients/{client_id}/comments", response_model=CRMClientResponse)
async def add_comment(
    client_id: str,
    request: CommentCreateRequest,
    repository: CRMRepository = Depends(get_repository),
    staff: Optional[Dict[str, Any]] = Depends(get_current_staff),
):
    """Prepend a calling comment to the client's history."""
    client = await _load_client(repository, client_id, staff)

    result = await add_calling_comment(repository, client, request.comment, staff=staff)
    raise_for_error(result)
    return result.value


@router.post("/clients/{client_id}/deal-status/toggle", response_model=CRMClientResponse)
async def toggle_deal(
    client_id: str,
    repository: CRMRepository = Depends(get_repository),
    staff: Optional[Dict[str, Any]] = Depends(get_current_staff),
):
    """Lock an open deal or unlock a locked one."""
    client = await _load_client(repository, client_id, staff)

    result = await toggle_deal_status(repository, client, staff=staff)
    raise_for_error(result)
    return result.value


@router.delete("/clients/{client_id}", response_model=DeleteResponse)
async def remove_client(client_id: str, repository: CRMRepository = Depends(get_repository)):
    result = await delete_client(repository, client_id)
    raise_for_error(result)
    return DeleteResponse(deleted=result.value)


@router.delete("/clients", response_model=DeleteResponse)
async def remove_all_clients(repository: CRMRepository = Depends(get_repository)):
    """Delete every client in every sheet."""
    result = await delete_all_clients(repository)
    raise_for_error(result)
    return DeleteResponse(deleted=result.value, detail="All CRM data deleted")
