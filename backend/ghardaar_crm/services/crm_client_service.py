"""
CRM client operations: inline field updates, calling comments, deal status,
deletion, sheets, per-sheet staff access and CSV export.

Every write goes to the repository first; the audit log and the in-memory
store are only touched once the write has succeeded.
"""
import csv
import io
import logging
from datetime import date, datetime, timezone
from typing import Dict, Any, List, Optional

from ..models.crm_client import LeadStage, LeadType, DealStatus, ADMIN_LEAD_STAGE_CONFIG
from .activity_log_service import (
    log_activity, display_value, field_label, lead_stage_label,
    UPDATE_FIELD, ADD_COMMENT, CALLING_COMMENT_LABEL,
)
from .client_store import ClientDeleted, LocalEdit
from .crm_repository import (
    CLIENTS_TABLE, SHEETS_TABLE, STAFF_TABLE, SHEET_ACCESS_TABLE, PersistenceError,
)
from .results import ErrorKind, OperationResult

logger = logging.getLogger(__name__)

# Fields staff may change inline, with their allowed values (None = free form)
EDITABLE_FIELDS = {
    "lead_stage": {stage.value for stage in LeadStage},
    "lead_type": {lead_type.value for lead_type in LeadType},
    "deal_status": {status.value for status in DealStatus},
    "location_category": None,
    "expected_visit_date": None,
}


def _as_text(value: Any) -> str:
    """Comparable text form of a field value; None and "" are both empty."""
    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def validate_field_value(field_name: str, value: Optional[str]) -> Optional[str]:
    """
    Check an inline edit and return the value to store (None for empty).
    Raises ValueError for a non-editable field or an invalid value.
    """
    if field_name not in EDITABLE_FIELDS:
        raise ValueError(f"Field '{field_name}' cannot be edited")

    text = _as_text(value).strip()
    if not text:
        return None

    allowed = EDITABLE_FIELDS[field_name]
    if allowed is not None and text not in allowed:
        raise ValueError(f"Invalid value '{text}' for {field_label(field_name)}")

    if field_name == "expected_visit_date":
        try:
            date.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid date '{text}', expected YYYY-MM-DD")

    return text


def is_unchanged(old_value: Any, new_value: Any) -> bool:
    return _as_text(old_value) == _as_text(new_value)


async def update_client_field(
    repository,
    client: Dict[str, Any],
    field_name: str,
    value: Optional[str],
    staff: Optional[Dict[str, Any]] = None,
    store=None,
) -> OperationResult:
    """
    Write one field of a client and record it in the activity log.

    An unchanged value is a successful no-op: nothing is written or logged.
    """
    try:
        new_value = validate_field_value(field_name, value)
    except ValueError as e:
        return OperationResult.failure(ErrorKind.VALIDATION, str(e))

    old_value = client.get(field_name)
    if is_unchanged(old_value, new_value):
        return OperationResult.success(client)

    try:
        updated = await repository.update(CLIENTS_TABLE, {field_name: new_value}, {"id": client["id"]})
    except PersistenceError as e:
        logger.error(f"Error updating {field_name} for client {client['id']}: {e}")
        return OperationResult.failure(ErrorKind.PERSISTENCE, f"Failed to update: {e}")

    if not updated:
        return OperationResult.failure(ErrorKind.NOT_FOUND, "Client not found")

    await log_activity(
        repository,
        client,
        UPDATE_FIELD,
        field_label(field_name),
        display_value(field_name, old_value),
        display_value(field_name, new_value),
        staff=staff,
    )

    record = updated[0]
    if store is not None:
        store.apply(LocalEdit(client["id"], {field_name: record.get(field_name)}))
    return OperationResult.success(record)


async def toggle_deal_status(
    repository,
    client: Dict[str, Any],
    staff: Optional[Dict[str, Any]] = None,
    store=None,
) -> OperationResult:
    """Lock an open deal, or reopen a locked one."""
    if client.get("deal_status") == DealStatus.LOCKED.value:
        new_status = DealStatus.OPEN.value
    else:
        new_status = DealStatus.LOCKED.value
    return await update_client_field(repository, client, "deal_status", new_status, staff=staff, store=store)


async def add_calling_comment(
    repository,
    client: Dict[str, Any],
    text: Optional[str],
    staff: Optional[Dict[str, Any]] = None,
    store=None,
) -> OperationResult:
    """Prepend a calling comment to the client's history."""
    comment = (text or "").strip()
    if not comment:
        return OperationResult.failure(ErrorKind.VALIDATION, "Comment cannot be empty")

    entry = {
        "comment": comment,
        "date": datetime.now(timezone.utc).isoformat(),
        "addedBy": staff.get("name") if staff else "admin",
    }
    history = [entry] + list(client.get("calling_comment_history") or [])
    patch = {"calling_comment": comment, "calling_comment_history": history}

    try:
        updated = await repository.update(CLIENTS_TABLE, patch, {"id": client["id"]})
    except PersistenceError as e:
        logger.error(f"Error adding comment for client {client['id']}: {e}")
        return OperationResult.failure(ErrorKind.PERSISTENCE, f"Failed to add comment: {e}")

    if not updated:
        return OperationResult.failure(ErrorKind.NOT_FOUND, "Client not found")

    await log_activity(repository, client, ADD_COMMENT, CALLING_COMMENT_LABEL, None, comment, staff=staff)

    if store is not None:
        store.apply(LocalEdit(client["id"], patch))
    return OperationResult.success(updated[0])


async def get_client(repository, client_id: str) -> OperationResult:
    try:
        rows = await repository.select(CLIENTS_TABLE, {"id": client_id}, order_by=None)
    except PersistenceError as e:
        return OperationResult.failure(ErrorKind.PERSISTENCE, str(e))
    if not rows:
        return OperationResult.failure(ErrorKind.NOT_FOUND, "Client not found")
    return OperationResult.success(rows[0])


async def delete_client(repository, client_id: str, store=None) -> OperationResult:
    try:
        removed = await repository.delete(CLIENTS_TABLE, {"id": client_id})
    except PersistenceError as e:
        return OperationResult.failure(ErrorKind.PERSISTENCE, f"Failed to delete client: {e}")
    if not removed:
        return OperationResult.failure(ErrorKind.NOT_FOUND, "Client not found")

    if store is not None:
        store.apply(ClientDeleted(client_id))
    logger.info(f"Deleted client {client_id}")
    return OperationResult.success(removed)


async def delete_all_clients(repository, store=None) -> OperationResult:
    try:
        removed = await repository.delete(CLIENTS_TABLE, {})
    except PersistenceError as e:
        return OperationResult.failure(ErrorKind.PERSISTENCE, f"Failed to delete clients: {e}")

    if store is not None:
        store.replace_all([], store.sheet_id)
    logger.info(f"Deleted all {removed} clients")
    return OperationResult.success(removed)


# ---------------------------------------------------------------------------
# Sheets
# ---------------------------------------------------------------------------

async def accessible_sheet_ids(repository, staff: Optional[Dict[str, Any]]) -> Optional[List[str]]:
    """Ids of the sheets granted to a staff member; None means every sheet (admin)."""
    if staff is None:
        return None
    grants = await repository.select(SHEET_ACCESS_TABLE, {"staff_id": staff["id"]}, order_by=None)
    return [grant["sheet_id"] for grant in grants]


async def check_sheet_access(
    repository,
    sheet_id: Optional[str],
    staff: Optional[Dict[str, Any]],
) -> OperationResult:
    """Succeeds when the acting user may work on the sheet."""
    try:
        allowed = await accessible_sheet_ids(repository, staff)
    except PersistenceError as e:
        return OperationResult.failure(ErrorKind.PERSISTENCE, f"Failed to check sheet access: {e}")

    if allowed is not None and sheet_id not in allowed:
        logger.warning(f"Staff {staff['id']} denied access to sheet {sheet_id}")
        return OperationResult.failure(ErrorKind.FORBIDDEN, "You don't have access to this sheet")
    return OperationResult.success(sheet_id)


async def list_sheets(repository, staff: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Sheets newest first, limited to the granted ones for a staff member."""
    sheet_ids = await accessible_sheet_ids(repository, staff)
    if sheet_ids is None:
        return await repository.select(SHEETS_TABLE)
    if not sheet_ids:
        return []
    return await repository.select(SHEETS_TABLE, {"id": sheet_ids})


async def create_sheet(repository, name: Optional[str], description: Optional[str] = None) -> OperationResult:
    sheet_name = (name or "").strip()
    if not sheet_name:
        return OperationResult.failure(ErrorKind.VALIDATION, "Sheet name is required")

    try:
        if await repository.select(SHEETS_TABLE, {"name": sheet_name}, order_by=None):
            return OperationResult.failure(ErrorKind.SHEET_EXISTS, "A sheet with this name already exists.")
        created = await repository.insert(SHEETS_TABLE, [{"name": sheet_name, "description": description}])
    except PersistenceError as e:
        if e.code == "integrity":
            return OperationResult.failure(ErrorKind.SHEET_EXISTS, "A sheet with this name already exists.")
        return OperationResult.failure(ErrorKind.PERSISTENCE, f"Failed to create sheet: {e}")

    return OperationResult.success(created[0])


async def delete_sheet(repository, sheet_id: str) -> OperationResult:
    """Delete a sheet together with all of its clients and access grants."""
    try:
        if not await repository.select(SHEETS_TABLE, {"id": sheet_id}, order_by=None):
            return OperationResult.failure(ErrorKind.NOT_FOUND, "Sheet not found")
        removed_clients = await repository.delete(CLIENTS_TABLE, {"sheet_id": sheet_id})
        await repository.delete(SHEET_ACCESS_TABLE, {"sheet_id": sheet_id})
        await repository.delete(SHEETS_TABLE, {"id": sheet_id})
    except PersistenceError as e:
        return OperationResult.failure(ErrorKind.PERSISTENCE, f"Failed to delete sheet: {e}")

    logger.info(f"Deleted sheet {sheet_id} with {removed_clients} clients")
    return OperationResult.success(removed_clients)


async def list_sheet_access(repository, sheet_id: str) -> List[Dict[str, Any]]:
    return await repository.select(SHEET_ACCESS_TABLE, {"sheet_id": sheet_id}, order_by="created_at", descending=False)


async def grant_sheet_access(
    repository,
    sheet_id: str,
    staff_id: str,
    granted_by: Optional[str] = None,
) -> OperationResult:
    """Let a staff member work on a sheet. Granting twice returns the existing grant."""
    try:
        if not await repository.select(SHEETS_TABLE, {"id": sheet_id}, order_by=None):
            return OperationResult.failure(ErrorKind.NOT_FOUND, "Sheet not found")
        if not await repository.select(STAFF_TABLE, {"id": staff_id}, order_by=None):
            return OperationResult.failure(ErrorKind.NOT_FOUND, "Staff member not found")

        existing = await repository.select(
            SHEET_ACCESS_TABLE, {"staff_id": staff_id, "sheet_id": sheet_id}, order_by=None,
        )
        if existing:
            return OperationResult.success(existing[0])

        created = await repository.insert(SHEET_ACCESS_TABLE, [{
            "staff_id": staff_id,
            "sheet_id": sheet_id,
            "granted_by": granted_by,
        }])
    except PersistenceError as e:
        return OperationResult.failure(ErrorKind.PERSISTENCE, f"Failed to grant sheet access: {e}")

    logger.info(f"Granted staff {staff_id} access to sheet {sheet_id}")
    return OperationResult.success(created[0])


async def revoke_sheet_access(repository, sheet_id: str, staff_id: str) -> OperationResult:
    try:
        removed = await repository.delete(SHEET_ACCESS_TABLE, {"staff_id": staff_id, "sheet_id": sheet_id})
    except PersistenceError as e:
        return OperationResult.failure(ErrorKind.PERSISTENCE, f"Failed to revoke sheet access: {e}")
    if not removed:
        return OperationResult.failure(ErrorKind.NOT_FOUND, "Sheet access not found")

    logger.info(f"Revoked staff {staff_id} access to sheet {sheet_id}")
    return OperationResult.success(removed)


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def _export_stage_label(stage: Optional[str]) -> str:
    """Importer label when the stage belongs to that set, else the staff label."""
    if not stage:
        return ""
    try:
        config = ADMIN_LEAD_STAGE_CONFIG.get(LeadStage(stage))
    except ValueError:
        return stage
    return config["label"] if config else lead_stage_label(stage)


EXPORT_HEADERS = [
    "Client Name",
    "Customer Number",
    "Lead Stage",
    "Lead Type",
    "Location Category",
    "Calling Comment",
    "Expected Visit Date",
    "Deal Status",
    "Admin Notes",
    "Created At",
]


def export_clients_csv(clients: List[Dict[str, Any]]) -> str:
    """Render clients as CSV text with human-readable enum labels."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_HEADERS)

    for client in clients:
        writer.writerow([
            client.get("client_name") or "",
            client.get("customer_number") or "",
            _export_stage_label(client.get("lead_stage")),
            display_value("lead_type", client.get("lead_type")) if client.get("lead_type") else "",
            client.get("location_category") or "",
            client.get("calling_comment") or "",
            _as_text(client.get("expected_visit_date")),
            display_value("deal_status", client.get("deal_status")) if client.get("deal_status") else "",
            client.get("admin_notes") or "",
            _as_text(client.get("created_at")),
        ])

    return output.getvalue()
