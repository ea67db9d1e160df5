from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ghardaar_crm import models  # noqa: F401  Register tables on Base
from ghardaar_crm.database import Base, get_db
from ghardaar_crm.services.crm_repository import (
    CRMRepository, PersistenceError, CLIENTS_TABLE, SHEETS_TABLE, ACTIVITY_TABLE,
)
from ghardaar_crm.services.realtime_service import ChangeFeed


class FakeRepository:
    """In-memory stand-in for CRMRepository that records every call."""

    def __init__(self, clients: Optional[List[Dict[str, Any]]] = None, sheets: Optional[List[Dict[str, Any]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            CLIENTS_TABLE: [dict(c) for c in (clients or [])],
            SHEETS_TABLE: [dict(s) for s in (sheets or [])],
            ACTIVITY_TABLE: [],
        }
        self.calls: List[tuple] = []
        self.fail_on: set = set()

    def _record(self, action: str, table: str) -> None:
        self.calls.append((action, table))
        if (action, table) in self.fail_on:
            raise PersistenceError(f"{action} on {table} rejected")

    @staticmethod
    def _matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
        return all(row.get(key) == value for key, value in (filters or {}).items())

    @property
    def writes(self) -> List[tuple]:
        return [call for call in self.calls if call[0] != "select"]

    async def select(self, table, filters=None, order_by="created_at", descending=True, limit=None):
        self._record("select", table)
        return [dict(row) for row in self.tables.setdefault(table, []) if self._matches(row, filters)]

    async def insert(self, table, rows):
        self._record("insert", table)
        inserted = []
        for row in rows:
            record = {"id": str(uuid.uuid4()), **row}
            self.tables.setdefault(table, []).append(record)
            inserted.append(dict(record))
        return inserted

    async def update(self, table, patch, filters):
        self._record("update", table)
        updated = []
        for row in self.tables.setdefault(table, []):
            if self._matches(row, filters):
                row.update(patch)
                updated.append(dict(row))
        return updated

    async def delete(self, table, filters):
        self._record("delete", table)
        rows = self.tables.setdefault(table, [])
        kept = [row for row in rows if not self._matches(row, filters)]
        removed = len(rows) - len(kept)
        self.tables[table] = kept
        return removed


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture()
def repository(db_session, feed) -> CRMRepository:
    return CRMRepository(db_session, feed=feed)


@pytest.fixture()
def fake_repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture()
def api_client(session_factory):
    from ghardaar_crm.main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
