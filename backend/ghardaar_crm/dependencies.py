"""
FastAPI dependencies for the CRM routers.
"""
import logging
from typing import Optional, Dict, Any

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from .database import get_db
from .models import CRMStaff
from .services.crm_repository import CRMRepository, row_to_dict
from .services.realtime_service import get_change_feed

logger = logging.getLogger(__name__)


def get_repository(db: Session = Depends(get_db)) -> CRMRepository:
    """Repository bound to the request session and the process change feed."""
    return CRMRepository(db, feed=get_change_feed())


def get_current_staff(
    x_staff_id: Optional[str] = Header(None),
    db: Session = Depends(get_db)
) -> Optional[Dict[str, Any]]:
    """
    Staff member acting on the request, taken from the X-Staff-Id header.

    Returns None when no header is sent (admin actions).

    Raises:
        HTTPException 403: If the staff member is unknown or deactivated
    """
    if not x_staff_id:
        return None

    staff = db.query(CRMStaff).filter(CRMStaff.id == x_staff_id).first()
    if staff is None or not staff.is_active:
        logger.warning(f"Rejected request for unknown or inactive staff {x_staff_id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff account not found or deactivated"
        )

    return row_to_dict(staff)


def raise_for_error(result) -> None:
    """Translate a failed OperationResult into an HTTPException."""
    if not result.ok:
        raise HTTPException(status_code=result.status_code, detail=result.detail)
