"""
Edit-session controllers for the CRM grid.

InlineEditor holds at most one open cell edit (Idle -> Editing -> Idle) and
commits it through update_client_field(); CommentComposer holds the text of a
new calling comment until it is saved.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .client_store import ClientStore
from .crm_client_service import EDITABLE_FIELDS, update_client_field, add_calling_comment
from .results import ErrorKind, OperationResult

logger = logging.getLogger(__name__)

IDLE = "idle"
EDITING = "editing"


@dataclass
class EditSession:
    client_id: str
    field: str
    pending_value: Any = None


class InlineEditor:
    """Commit-on-blur editor for a single cell at a time."""

    def __init__(self, repository, store: ClientStore, staff: Optional[Dict[str, Any]] = None):
        self.repository = repository
        self.store = store
        self.staff = staff
        self.session: Optional[EditSession] = None
        self.saving = False
        self.last_error: Optional[str] = None

    @property
    def state(self) -> str:
        return EDITING if self.session else IDLE

    @property
    def is_editing(self) -> bool:
        return self.session is not None

    def start_edit(self, client_id: str, field: str, current_value: Any = None) -> EditSession:
        """Open an edit seeded with the current value; an open edit is dropped unsaved."""
        if field not in EDITABLE_FIELDS:
            raise ValueError(f"Field '{field}' cannot be edited")
        if self.session is not None:
            logger.debug(f"Discarding open edit of {self.session.field} on {self.session.client_id}")
        self.session = EditSession(client_id=client_id, field=field, pending_value=current_value)
        self.last_error = None
        return self.session

    def set_value(self, value: Any) -> None:
        if self.session is None:
            raise RuntimeError("No edit in progress")
        self.session.pending_value = value

    def cancel(self) -> None:
        self.session = None
        self.last_error = None

    async def commit(self, value: Any = None) -> OperationResult:
        """
        Save the pending value. An unchanged value closes the edit without a
        write; a failed write keeps the edit open with the attempted value.
        """
        if self.session is None:
            return OperationResult.failure(ErrorKind.VALIDATION, "No edit in progress")
        if value is not None:
            self.session.pending_value = value

        session = self.session
        client = self.store.get(session.client_id)
        if client is None:
            self.cancel()
            return OperationResult.failure(ErrorKind.NOT_FOUND, "Client not found")

        self.saving = True
        try:
            result = await update_client_field(
                self.repository, client, session.field, session.pending_value,
                staff=self.staff, store=self.store,
            )
        finally:
            self.saving = False

        if result.ok:
            self.cancel()
        else:
            self.last_error = result.detail
        return result


class CommentComposer:
    """Input state for adding a calling comment to one client."""

    def __init__(self, repository, store: ClientStore, staff: Optional[Dict[str, Any]] = None):
        self.repository = repository
        self.store = store
        self.staff = staff
        self.text = ""
        self.submitting = False

    def set_text(self, text: str) -> None:
        self.text = text or ""

    @property
    def can_submit(self) -> bool:
        return bool(self.text.strip()) and not self.submitting

    async def submit(self, client_id: str) -> OperationResult:
        if not self.can_submit:
            return OperationResult.failure(ErrorKind.VALIDATION, "Comment cannot be empty")

        client = self.store.get(client_id)
        if client is None:
            return OperationResult.failure(ErrorKind.NOT_FOUND, "Client not found")

        self.submitting = True
        try:
            result = await add_calling_comment(
                self.repository, client, self.text, staff=self.staff, store=self.store,
            )
        finally:
            self.submitting = False

        if result.ok:
            self.text = ""
        return result
