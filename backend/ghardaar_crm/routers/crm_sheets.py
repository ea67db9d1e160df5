"""
Sheets router, including the per-sheet staff access grants.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from ..dependencies import get_repository, get_current_staff, raise_for_error
from ..schemas.crm_client import DeleteResponse
from ..schemas.sheet import SheetCreate, SheetResponse, SheetAccessGrant, SheetAccessResponse
from ..services.crm_client_service import (
    list_sheets, create_sheet, delete_sheet,
    list_sheet_access, grant_sheet_access, revoke_sheet_access,
)
from ..services.crm_repository import CRMRepository

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/crm/sheets", tags=["crm-sheets"])


def require_admin(staff: Optional[Dict[str, Any]] = Depends(get_current_staff)) -> None:
    """Sheet access is managed by admins only; staff requests are rejected."""
    if staff is not None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only admins can manage sheet access",
        )


@router.get("/", response_model=List[SheetResponse])
async def get_sheets(
    repository: CRMRepository = Depends(get_repository),
    staff: Optional[Dict[str, Any]] = Depends(get_current_staff),
):
    """List sheets, newest first. Staff only see the sheets granted to them."""
    return await list_sheets(repository, staff)


@router.post("/", response_model=SheetResponse, status_code=status.HTTP_201_CREATED)
async def add_sheet(request: SheetCreate, repository: CRMRepository = Depends(get_repository)):
    result = await create_sheet(repository, request.name, request.description)
    raise_for_error(result)
    return result.value


@router.delete("/{sheet_id}", response_model=DeleteResponse)
async def remove_sheet(sheet_id: str, repository: CRMRepository = Depends(get_repository)):
    """Delete a sheet and all of its clients."""
    result = await delete_sheet(repository, sheet_id)
    raise_for_error(result)
    return DeleteResponse(deleted=result.value, detail="Sheet deleted")


@router.get("/{sheet_id}/access", response_model=List[SheetAccessResponse], dependencies=[Depends(require_admin)])
async def get_sheet_access(sheet_id: str, repository: CRMRepository = Depends(get_repository)):
    return await list_sheet_access(repository, sheet_id)


@router.post(
    "/{sheet_id}/access",
    response_model=SheetAccessResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
async def add_sheet_access(
    sheet_id: str,
    request: SheetAccessGrant,
    repository: CRMRepository = Depends(get_repository),
):
    """Grant a staff member access to a sheet."""
    result = await grant_sheet_access(repository, sheet_id, request.staff_id, request.granted_by)
    raise_for_error(result)
    return result.value


@router.delete("/{sheet_id}/access/{staff_id}", response_model=DeleteResponse, dependencies=[Depends(require_admin)])
async def remove_sheet_access(sheet_id: str, staff_id: str, repository: CRMRepository = Depends(get_repository)):
    result = await revoke_sheet_access(repository, sheet_id, staff_id)
    raise_for_error(result)
    return DeleteResponse(deleted=result.value, detail="Sheet access revoked")
