"""
Pytest configuration and shared fakes.

FakeStorage, FakeClock and FakeBackend stand in for remote storage, time and
the managed backend so tests run without network access.
"""

import copy
import itertools
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from csos.backend import get_backend
from csos.common.config import get_settings
from csos.main import app
from csos.rule_cache import RuleCache, get_rule_cache
from csos.storage import RemoteStorage
from csos.utils.error_handling import BackendError, StorageError

RULES_DIR = Path(__file__).resolve().parents[1] / "csos" / "rules_data"


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStorage(RemoteStorage):
    """In-memory object storage that records every download."""

    def __init__(self, objects=None):
        self.objects = dict(objects or {})
        self.calls = []
        self.error = None

    def download(self, bucket_name, file_path):
        self.calls.append((bucket_name, file_path))
        if self.error is not None:
            raise self.error
        try:
            return self.objects[(bucket_name, file_path)]
        except KeyError:
            raise StorageError(f"Object not found: {bucket_name}/{file_path}")


class FakeBackend:
    """
    In-memory stand-in for BackendClient.

    tokens maps bearer tokens to user ids; tables maps table names to rows.
    Tables named in fail_tables raise BackendError on any access.
    """

    def __init__(self, tokens=None, tables=None):
        self.tokens = dict(tokens or {})
        self.tables = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.fail_tables = set()
        self._ids = itertools.count(1)

    def _rows(self, table):
        if table in self.fail_tables:
            raise BackendError(f"relation {table} unavailable", status_code=500)
        return self.tables.setdefault(table, [])

    @staticmethod
    def _matches(row, filters):
        return all(
            row.get(k) is None if v is None else str(row.get(k)) == str(v)
            for k, v in (filters or {}).items()
        )

    def get_user(self, access_token):
        user_id = self.tokens.get(access_token)
        return {"id": user_id} if user_id else None

    def for_user(self, access_token):
        return self

    def select(self, table, filters=None, columns="*", order=None, limit=None):
        rows = [copy.deepcopy(r) for r in self._rows(table) if self._matches(r, filters)]
        if order:
            column, _, direction = order.partition(".")
            rows.sort(key=lambda r: str(r.get(column) or ""), reverse=direction == "desc")
        if limit:
            rows = rows[:limit]
        if columns != "*":
            wanted = [c.strip() for c in columns.split(",")]
            rows = [{c: r.get(c) for c in wanted} for r in rows]
        return rows

    def select_one(self, table, filters, columns="*"):
        rows = self.select(table, filters, columns=columns, limit=1)
        return rows[0] if rows else None

    def insert(self, table, row):
        stored = dict(row)
        stored.setdefault("id", f"{table}-{next(self._ids)}")
        self._rows(table).append(stored)
        return copy.deepcopy(stored)

    def update(self, table, values, filters):
        updated = []
        for row in self._rows(table):
            if self._matches(row, filters):
                row.update(values)
                updated.append(copy.deepcopy(row))
        return updated

    def delete(self, table, filters):
        rows = self._rows(table)
        self.tables[table] = [r for r in rows if not self._matches(r, filters)]


def rule_objects(bucket="rules"):
    """Bucket contents mirroring csos/rules_data."""
    return {
        (bucket, path.name): path.read_bytes()
        for path in RULES_DIR.glob("*.yaml")
    }


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return FakeStorage(rule_objects())


@pytest.fixture
def rule_cache(storage, clock):
    return RuleCache(storage=storage, local_dir=str(RULES_DIR), clock=clock)


@pytest.fixture
def backend():
    return FakeBackend(
        tokens={"admin-token": "admin-1", "alice-token": "U1", "bob-token": "U2", "exec-token": "exec-1"},
        tables={
            "user_role": [
                {"user_id": "admin-1", "role": "admin", "assigned_by": None, "assigned_at": "2025-01-01T00:00:00+00:00"},
                {"user_id": "exec-1", "role": "executive", "assigned_by": "admin-1", "assigned_at": "2025-01-02T00:00:00+00:00"},
                {"user_id": "U1", "role": "major_gifts", "assigned_by": "admin-1", "assigned_at": "2025-01-03T00:00:00+00:00"},
                {"user_id": "U1", "role": "ticketing", "assigned_by": "admin-1", "assigned_at": "2025-01-04T00:00:00+00:00"},
                {"user_id": "U2", "role": "marketing", "assigned_by": "admin-1", "assigned_at": "2025-01-05T00:00:00+00:00"},
            ],
        },
    )


@pytest.fixture
def client(backend, rule_cache):
    """TestClient with backend and rule cache replaced by fakes."""
    app.dependency_overrides[get_backend] = lambda: backend
    app.dependency_overrides[get_rule_cache] = lambda: rule_cache
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_backend, None)
        app.dependency_overrides.pop(get_rule_cache, None)


@pytest.fixture
def clean_settings(monkeypatch):
    """Start each config test from an empty CSOS environment."""
    for name in ("CSOS_BACKEND_URL", "CSOS_SERVICE_ROLE_KEY", "CSOS_ANON_KEY", "CSOS_RULES_BUCKET",
                 "CSOS_LOCAL_RULES_DIR", "CSOS_RULE_CACHE_TTL_SECONDS", "CSOS_RULES_STORAGE",
                 "CSOS_REQUEST_TIMEOUT_SECONDS", "GOOGLE_CLOUD_PROJECT"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    get_backend.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()
    get_backend.cache_clear()
