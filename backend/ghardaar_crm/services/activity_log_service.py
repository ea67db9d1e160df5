"""
Audit trail of staff actions on CRM clients.

Writing a log entry is best-effort: the client change it describes is already
committed, so failures are logged and never returned to the caller.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from ..models.crm_client import (
    LeadStage, LeadType, DealStatus,
    ADMIN_LEAD_STAGE_CONFIG, STAFF_LEAD_STAGE_CONFIG, LEAD_TYPE_CONFIG, DEAL_STATUS_CONFIG,
)
from .crm_repository import ACTIVITY_TABLE, SHEETS_TABLE

logger = logging.getLogger(__name__)

UPDATE_FIELD = "update_field"
ADD_COMMENT = "add_comment"

FIELD_LABELS = {
    "lead_stage": "Lead Stage",
    "lead_type": "Lead Type",
    "location_category": "Location",
    "expected_visit_date": "Expected Visit Date",
    "deal_status": "Deal Status",
}

CALLING_COMMENT_LABEL = "Calling Comment"


def field_label(field_name: str) -> str:
    return FIELD_LABELS.get(field_name, field_name)


def _enum_label(config: Dict[Any, Dict[str, Any]], enum_cls, value: str) -> Optional[str]:
    try:
        entry = config.get(enum_cls(value))
    except ValueError:
        return None
    return entry["label"] if entry else None


def lead_stage_label(value: str) -> str:
    """Staff label first, then the importer label, then the raw value."""
    return (
        _enum_label(STAFF_LEAD_STAGE_CONFIG, LeadStage, value)
        or _enum_label(ADMIN_LEAD_STAGE_CONFIG, LeadStage, value)
        or value
    )


def display_value(field_name: str, value: Any) -> str:
    """Human-readable rendering of a field value for the audit log."""
    if value is None or value == "":
        return "empty"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if field_name == "lead_stage":
        return lead_stage_label(value)
    if field_name == "lead_type":
        return _enum_label(LEAD_TYPE_CONFIG, LeadType, value) or value
    if field_name == "deal_status":
        return _enum_label(DEAL_STATUS_CONFIG, DealStatus, value) or value
    return str(value)


async def log_activity(
    repository,
    client: Dict[str, Any],
    action_type: str,
    field_changed: Optional[str],
    old_value: Optional[str],
    new_value: Optional[str],
    staff: Optional[Dict[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """Append one activity entry. Returns the entry, or None if it could not be written."""
    try:
        sheet_name = None
        if client.get("sheet_id"):
            sheets = await repository.select(SHEETS_TABLE, {"id": client["sheet_id"]}, order_by=None)
            sheet_name = sheets[0]["name"] if sheets else None

        entries = await repository.insert(ACTIVITY_TABLE, [{
            "staff_id": staff.get("id") if staff else None,
            "staff_name": staff.get("name") if staff else None,
            "client_id": client["id"],
            "client_name": client.get("client_name"),
            "sheet_id": client.get("sheet_id"),
            "sheet_name": sheet_name,
            "action_type": action_type,
            "field_changed": field_changed,
            "old_value": old_value,
            "new_value": new_value,
        }])
        return entries[0]
    except Exception:
        # Don't block the main operation if logging fails
        logger.exception(f"Error logging {action_type} activity for client {client.get('id')}")
        return None


async def list_activity(
    repository,
    client_id: Optional[str] = None,
    sheet_id: Optional[str] = None,
    limit: int = 100,
) -> List[Dict[str, Any]]:
    """Activity entries, newest first."""
    filters: Dict[str, Any] = {}
    if client_id:
        filters["client_id"] = client_id
    if sheet_id:
        filters["sheet_id"] = sheet_id
    return await repository.select(ACTIVITY_TABLE, filters, order_by="timestamp", limit=limit)
