"""
Activity log router.
"""
from typing import Optional, List

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_repository
from ..schemas.activity import ActivityLogResponse
from ..services.activity_log_service import list_activity
from ..services.crm_repository import CRMRepository

router = APIRouter(prefix="/api/crm/activity", tags=["crm-activity"])


@router.get("/", response_model=List[ActivityLogResponse])
async def get_activity(
    client_id: Optional[str] = None,
    sheet_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    repository: CRMRepository = Depends(get_repository),
):
    """Staff activity, newest first."""
    return await list_activity(repository, client_id=client_id, sheet_id=sheet_id, limit=limit)
