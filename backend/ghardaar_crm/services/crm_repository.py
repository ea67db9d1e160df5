"""
Persistence collaborator for the CRM tables.

Exposes the small table-oriented interface the CRM services are written
against (select / insert / update / delete / subscribe) on top of a SQLAlchemy
session. Rows travel as plain dicts. Session work runs in the threadpool so
the event loop is never blocked on the database. Every write is committed as
one unit and then published on the change feed from the calling coroutine.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import Date, DateTime, desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import CRMClient, CRMSheet, CRMStaff, CRMSheetAccess, CRMActivityLog
from .realtime_service import ChangeEvent, ChangeFeed, Subscription, INSERT, UPDATE, DELETE

logger = logging.getLogger(__name__)

CLIENTS_TABLE = "crm_clients"
SHEETS_TABLE = "crm_sheets"
STAFF_TABLE = "crm_staff"
SHEET_ACCESS_TABLE = "crm_sheet_access"
ACTIVITY_TABLE = "crm_activity_logs"

TABLE_MODELS = {
    CLIENTS_TABLE: CRMClient,
    SHEETS_TABLE: CRMSheet,
    STAFF_TABLE: CRMStaff,
    SHEET_ACCESS_TABLE: CRMSheetAccess,
    ACTIVITY_TABLE: CRMActivityLog,
}


class PersistenceError(Exception):
    """Raised when a read or write against the database fails."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


def row_to_dict(obj: Any) -> Dict[str, Any]:
    """Convert a model instance into a plain dict of its columns."""
    return {column.name: getattr(obj, column.name) for column in obj.__table__.columns}


def _coerce_value(column: Any, value: Any) -> Any:
    """Convert ISO strings into date/datetime objects for temporal columns."""
    if value is None or not isinstance(value, str):
        return value
    if isinstance(column.type, DateTime):
        return datetime.fromisoformat(value)
    if isinstance(column.type, Date):
        return date.fromisoformat(value)
    return value


def _coerce_row(model: Any, values: Dict[str, Any]) -> Dict[str, Any]:
    columns = model.__table__.columns
    coerced = {}
    for key, value in values.items():
        if key not in columns:
            raise ValueError(f"unknown column '{key}' for table {model.__tablename__}")
        coerced[key] = _coerce_value(columns[key], value)
    return coerced


class CRMRepository:
    """Table gateway used by the import, edit and comment services."""

    def __init__(self, db: Session, feed: Optional[ChangeFeed] = None):
        self.db = db
        self.feed = feed

    def _model(self, table: str) -> Any:
        model = TABLE_MODELS.get(table)
        if model is None:
            raise PersistenceError(f"unknown table: {table}")
        return model

    def _filtered(self, model: Any, filters: Optional[Dict[str, Any]]):
        query = self.db.query(model)
        for key, value in (filters or {}).items():
            column = getattr(model, key)
            if isinstance(value, (list, tuple, set)):
                query = query.filter(column.in_(list(value)))
            else:
                query = query.filter(column == value)
        return query

    def _publish(self, table: str, event_type: str, new=None, old=None) -> None:
        if self.feed is not None:
            self.feed.publish(ChangeEvent(table=table, event_type=event_type, new=new, old=old))

    def _fail(self, action: str, table: str, error: Exception) -> PersistenceError:
        self.db.rollback()
        logger.error(f"{action} on {table} failed: {error}")
        code = "integrity" if isinstance(error, IntegrityError) else None
        return PersistenceError(str(error), code=code)

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = "created_at",
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return rows matching the equality / IN filters."""
        model = self._model(table)

        def run() -> List[Dict[str, Any]]:
            try:
                query = self._filtered(model, filters)
                if order_by:
                    column = getattr(model, order_by)
                    query = query.order_by(desc(column) if descending else column)
                if limit:
                    query = query.limit(limit)
                return [row_to_dict(obj) for obj in query.all()]
            except SQLAlchemyError as e:
                raise self._fail("select", table, e) from e

        return await run_in_threadpool(run)

    async def insert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Insert all rows in one transaction and return them with ids."""
        model = self._model(table)

        def run() -> List[Dict[str, Any]]:
            try:
                objects = [model(**_coerce_row(model, row)) for row in rows]
                self.db.add_all(objects)
                self.db.commit()
                for obj in objects:
                    self.db.refresh(obj)
                return [row_to_dict(obj) for obj in objects]
            except (SQLAlchemyError, ValueError) as e:
                raise self._fail("insert", table, e) from e

        inserted = await run_in_threadpool(run)
        for row in inserted:
            self._publish(table, INSERT, new=row)
        return inserted

    async def update(
        self,
        table: str,
        patch: Dict[str, Any],
        filters: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        """Apply a patch to every row matching the filters."""
        model = self._model(table)

        def run() -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
            try:
                values = _coerce_row(model, patch)
                objects = self._filtered(model, filters).all()
                before = [row_to_dict(obj) for obj in objects]
                for obj in objects:
                    for key, value in values.items():
                        setattr(obj, key, value)
                self.db.commit()
                for obj in objects:
                    self.db.refresh(obj)
                return before, [row_to_dict(obj) for obj in objects]
            except (SQLAlchemyError, ValueError) as e:
                raise self._fail("update", table, e) from e

        before, updated = await run_in_threadpool(run)
        for old, row in zip(before, updated):
            self._publish(table, UPDATE, new=row, old=old)
        return updated

    async def delete(self, table: str, filters: Dict[str, Any]) -> int:
        """Delete rows matching the filters, returning how many were removed."""
        model = self._model(table)

        def run() -> List[Dict[str, Any]]:
            try:
                objects = self._filtered(model, filters).all()
                removed = [row_to_dict(obj) for obj in objects]
                for obj in objects:
                    self.db.delete(obj)
                self.db.commit()
                return removed
            except SQLAlchemyError as e:
                raise self._fail("delete", table, e) from e

        removed = await run_in_threadpool(run)
        for row in removed:
            self._publish(table, DELETE, old=row)
        return len(removed)

    def subscribe(
        self,
        table: str,
        on_insert=None,
        on_update=None,
        on_delete=None,
        scope: Optional[Dict[str, Any]] = None,
    ) -> Subscription:
        """Subscribe to committed changes of a table."""
        if self.feed is None:
            raise PersistenceError("repository has no change feed")
        self._model(table)
        return self.feed.subscribe(table, on_insert, on_update, on_delete, scope=scope)
