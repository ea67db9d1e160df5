"""
Business logic services.
"""
from .crm_repository import CRMRepository, PersistenceError
from .realtime_service import ChangeFeed, get_change_feed
from .client_store import ClientStore, bind_store
from .csv_import_service import ImportDraft, ImportTarget, execute_import
from .inline_editor import InlineEditor, CommentComposer
from .results import ErrorKind, OperationResult

__all__ = [
    "CRMRepository", "PersistenceError",
    "ChangeFeed", "get_change_feed",
    "ClientStore", "bind_store",
    "ImportDraft", "ImportTarget", "execute_import",
    "InlineEditor", "CommentComposer",
    "ErrorKind", "OperationResult",
]
