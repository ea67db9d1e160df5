"""
In-memory client list for one CRM session.

All mutations go through ClientStore.apply(), so local commits and change-feed
deliveries share the same id-based merge. Inserts are prepended and updates
replace in place, except that an update moving a client to another sheet
removes it. Deletes remove, and unknown ids are ignored.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .realtime_service import ChangeFeed, Subscription
from .crm_repository import CLIENTS_TABLE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientInserted:
    record: Dict[str, Any]


@dataclass(frozen=True)
class ClientUpdated:
    record: Dict[str, Any]


@dataclass(frozen=True)
class ClientDeleted:
    client_id: str


@dataclass(frozen=True)
class LocalEdit:
    """Fields this session has just written for one client."""
    client_id: str
    changes: Dict[str, Any] = field(default_factory=dict)


StoreEvent = Union[ClientInserted, ClientUpdated, ClientDeleted, LocalEdit]


class ClientStore:
    """Newest-first list of client records, optionally scoped to one sheet."""

    def __init__(self, clients: Optional[List[Dict[str, Any]]] = None, sheet_id: Optional[str] = None):
        self.clients: List[Dict[str, Any]] = [dict(c) for c in (clients or [])]
        self.sheet_id = sheet_id  # None = all sheets

    def _index_of(self, client_id: Optional[str]) -> Optional[int]:
        for index, client in enumerate(self.clients):
            if client.get("id") == client_id:
                return index
        return None

    def in_scope(self, record: Dict[str, Any]) -> bool:
        return self.sheet_id is None or record.get("sheet_id") == self.sheet_id

    def get(self, client_id: str) -> Optional[Dict[str, Any]]:
        index = self._index_of(client_id)
        return self.clients[index] if index is not None else None

    def apply(self, event: StoreEvent) -> None:
        """Merge one event into the list."""
        if isinstance(event, ClientInserted):
            record = dict(event.record)
            index = self._index_of(record.get("id"))
            if index is not None:
                self.clients[index] = record
            elif self.in_scope(record):
                self.clients.insert(0, record)

        elif isinstance(event, ClientUpdated):
            index = self._index_of(event.record.get("id"))
            if index is None:
                return
            if self.in_scope(event.record):
                self.clients[index] = dict(event.record)
            else:
                # Moved to another sheet
                del self.clients[index]

        elif isinstance(event, ClientDeleted):
            index = self._index_of(event.client_id)
            if index is not None:
                del self.clients[index]

        elif isinstance(event, LocalEdit):
            index = self._index_of(event.client_id)
            if index is not None:
                self.clients[index] = {**self.clients[index], **event.changes}

        else:
            raise TypeError(f"unsupported store event: {event!r}")

    def merge_inserted(self, records: List[Dict[str, Any]]) -> None:
        """Prepend a batch so the first record of the batch ends up on top."""
        for record in reversed(records):
            self.apply(ClientInserted(record))

    def replace_all(self, clients: List[Dict[str, Any]], sheet_id: Optional[str] = None) -> None:
        """Swap in a freshly loaded list, e.g. after switching sheets."""
        self.clients = [dict(c) for c in clients]
        self.sheet_id = sheet_id

    def __len__(self) -> int:
        return len(self.clients)


def bind_store(feed: ChangeFeed, store: ClientStore) -> Subscription:
    """Keep a store in sync with committed client changes."""
    scope = {"sheet_id": store.sheet_id} if store.sheet_id else None
    return feed.subscribe(
        CLIENTS_TABLE,
        on_insert=lambda row: store.apply(ClientInserted(row)),
        on_update=lambda row: store.apply(ClientUpdated(row)),
        on_delete=lambda row: store.apply(ClientDeleted(row.get("id"))),
        scope=scope,
    )


# ---------------------------------------------------------------------------
# Filtering and stats
# ---------------------------------------------------------------------------

def filter_clients(
    clients: List[Dict[str, Any]],
    search: Optional[str] = None,
    lead_stage: Optional[str] = None,
    lead_type: Optional[str] = None,
    deal_status: Optional[str] = None,
    location_category: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Filter clients the way the CRM grid does.

    search matches the name or calling comment case-insensitively and the
    phone number as a plain substring. location_category is a
    case-insensitive substring match; the enum filters are exact.
    """
    needle = (search or "").lower()
    location = (location_category or "").lower()
    result = []

    for client in clients:
        if needle:
            matches_search = (
                needle in (client.get("client_name") or "").lower()
                or search in (client.get("customer_number") or "")
                or needle in (client.get("calling_comment") or "").lower()
            )
            if not matches_search:
                continue
        if lead_stage and client.get("lead_stage") != lead_stage:
            continue
        if lead_type and client.get("lead_type") != lead_type:
            continue
        if deal_status and client.get("deal_status") != deal_status:
            continue
        if location and location not in (client.get("location_category") or "").lower():
            continue
        result.append(client)

    return result


def client_stats(clients: List[Dict[str, Any]]) -> Dict[str, int]:
    return {
        "total": len(clients),
        "hot": sum(1 for c in clients if c.get("lead_type") == "hot"),
        "warm": sum(1 for c in clients if c.get("lead_type") == "warm"),
        "cold": sum(1 for c in clients if c.get("lead_type") == "cold"),
        "locked": sum(1 for c in clients if c.get("deal_status") == "locked"),
    }


def unique_locations(clients: List[Dict[str, Any]]) -> List[str]:
    """Distinct non-empty location categories in first-seen order."""
    seen: List[str] = []
    for client in clients:
        location = client.get("location_category")
        if location and location not in seen:
            seen.append(location)
    return seen
