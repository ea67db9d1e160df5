"""
In-process change feed for CRM tables.

The repository publishes a ChangeEvent after every committed insert, update
or delete. Subscribers (client stores, WebSocket sessions) receive the events
through per-event-type callbacks, optionally scoped to rows matching a filter
such as {"sheet_id": "..."}.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"

RowCallback = Callable[[Dict[str, Any]], None]


@dataclass(frozen=True)
class ChangeEvent:
    """A committed change to one row of a table."""
    table: str
    event_type: str  # INSERT / UPDATE / DELETE
    new: Optional[Dict[str, Any]] = None  # Row after the change (insert/update)
    old: Optional[Dict[str, Any]] = None  # Row before the change (update/delete)

    @property
    def row(self) -> Dict[str, Any]:
        return self.new if self.new is not None else (self.old or {})


@dataclass
class Subscription:
    """Handle returned by ChangeFeed.subscribe()."""
    feed: "ChangeFeed"
    table: str
    on_insert: Optional[RowCallback] = None
    on_update: Optional[RowCallback] = None
    on_delete: Optional[RowCallback] = None
    scope: Dict[str, Any] = field(default_factory=dict)
    active: bool = True

    def in_scope(self, row: Optional[Dict[str, Any]]) -> bool:
        if row is None:
            return False
        for key, value in self.scope.items():
            # Delete payloads may only carry the id; let those through
            if key in row and row[key] != value:
                return False
        return True

    def matches(self, event: ChangeEvent) -> bool:
        """Whether the event belongs to this subscription's table and scope.

        An update also matches when only the row before it was in scope, so
        subscribers learn that the row has moved out.
        """
        if not self.active or event.table != self.table:
            return False
        if self.in_scope(event.row):
            return True
        return event.event_type == UPDATE and self.in_scope(event.old)

    def deliver(self, event: ChangeEvent) -> None:
        if event.event_type == UPDATE and self.scope:
            # Rows crossing the scope boundary arrive as deletes or inserts
            if not self.in_scope(event.new):
                if self.on_delete:
                    self.on_delete(event.new or {})
                return
            if event.old is not None and not self.in_scope(event.old):
                if self.on_insert:
                    self.on_insert(event.new)
                return

        if event.event_type == INSERT and self.on_insert:
            self.on_insert(event.new or {})
        elif event.event_type == UPDATE and self.on_update:
            self.on_update(event.new or {})
        elif event.event_type == DELETE and self.on_delete:
            self.on_delete(event.old or {})

    def unsubscribe(self) -> None:
        self.feed.remove(self)


class ChangeFeed:
    """Fan-out of committed changes to in-process subscribers."""

    def __init__(self):
        self._subscriptions: List[Subscription] = []

    def subscribe(
        self,
        table: str,
        on_insert: Optional[RowCallback] = None,
        on_update: Optional[RowCallback] = None,
        on_delete: Optional[RowCallback] = None,
        scope: Optional[Dict[str, Any]] = None,
    ) -> Subscription:
        """Register callbacks for changes on a table."""
        subscription = Subscription(
            feed=self,
            table=table,
            on_insert=on_insert,
            on_update=on_update,
            on_delete=on_delete,
            scope=dict(scope or {}),
        )
        self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to {table} changes (scope={subscription.scope})")
        return subscription

    def remove(self, subscription: Subscription) -> None:
        subscription.active = False
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: ChangeEvent) -> None:
        """Deliver an event to every matching subscriber.

        A failing subscriber is logged and skipped; the change it was told
        about is already committed.
        """
        for subscription in list(self._subscriptions):
            if not subscription.matches(event):
                continue
            try:
                subscription.deliver(event)
            except Exception:
                logger.exception(f"Change subscriber failed for {event.event_type} on {event.table}")

    def __len__(self) -> int:
        return len(self._subscriptions)


# Singleton instance
_feed_instance: Optional[ChangeFeed] = None


def get_change_feed() -> ChangeFeed:
    """Get the process-wide change feed."""
    global _feed_instance
    if _feed_instance is None:
        _feed_instance = ChangeFeed()
    return _feed_instance
