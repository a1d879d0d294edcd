"""
Shared pytest fixtures.

The settings object is built at import time, so the required environment
is set here before anything under mattersync is imported.
"""
import os

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("SYNC_API_KEY", "test-sync-key")
os.environ.setdefault("ENVIRONMENT", "test")

import copy
import itertools
import operator
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest
from postgrest.exceptions import APIError


# ============================================================================
# IN-MEMORY SUPABASE
# ============================================================================

UNIQUE_KEYS = {
    "cases": "pp_id",
    "contacts": "pp_id",
    "tasks": "pp_id",
    "invoices": "pp_id",
    "expenses": "pp_id",
    "users": "email",
    "sync_logs": "run_id",
    "sync_locks": "source",
}


class _Result:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


def _in(value, values):
    return value is not None and str(value) in {str(v) for v in values}


def _compare(op):
    def check(value, other):
        if value is None:
            return False
        return op(value, other)
    return check


class _FakeQuery:
    """Just enough of the postgrest query builder for the sync engine."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.columns = "*"
        self.payload: Any = None
        self.on_conflict: Optional[str] = None
        self.filters: List[tuple] = []
        self.order_by: Optional[tuple] = None
        self.limit_n: Optional[int] = None
        self.offset_n = 0
        self.count: Optional[str] = None

    def select(self, columns="*", count=None):
        self.op = "select"
        self.columns = columns
        self.count = count
        return self

    def insert(self, rows):
        self.op = "insert"
        self.payload = rows
        return self

    def upsert(self, rows, on_conflict=None, **kwargs):
        self.op = "upsert"
        self.payload = rows
        self.on_conflict = on_conflict
        return self

    def update(self, values):
        self.op = "update"
        self.payload = values
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append((column, _compare(lambda a, b: str(a) == str(b)), value))
        return self

    def lt(self, column, value):
        self.filters.append((column, _compare(operator.lt), value))
        return self

    def gte(self, column, value):
        self.filters.append((column, _compare(operator.ge), value))
        return self

    def in_(self, column, values):
        self.filters.append((column, _in, list(values)))
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def range(self, start, end):
        self.offset_n = start
        self.limit_n = end - start + 1
        return self

    def matches(self, row: Dict[str, Any]) -> bool:
        return all(check(row.get(column), value) for column, check, value in self.filters)

    def execute(self):
        return self.db._execute(self)


class FakeSupabase:
    """
    In-memory stand-in for supabase.Client.

    Generated ids look like "<table>-<n>". Unique keys follow sql/schema.sql.
    Writes are atomic per call: a rejected row fails the whole statement.
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.calls: List[tuple] = []
        self._rejections: List[tuple] = []
        self._failing: set = set()
        self._ids = itertools.count(1)

    # -- test helpers --------------------------------------------------------

    def seed(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        seeded = []
        for row in rows:
            row = dict(row)
            row.setdefault("id", self._new_id(table))
            self.tables[table].append(row)
            seeded.append(row)
        return seeded

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self.tables[table])

    def reject(self, table: str, predicate: Callable[[Dict[str, Any]], bool], message: str = "violates check constraint"):
        """Make writes containing a matching row fail."""
        self._rejections.append((table, predicate, message))

    def fail(self, table: str):
        """Make every statement on a table fail."""
        self._failing.add(table)

    def calls_for(self, table: str, op: Optional[str] = None) -> List[tuple]:
        return [c for c in self.calls if c[0] == table and (op is None or c[1] == op)]

    # -- client surface ------------------------------------------------------

    def table(self, name: str) -> _FakeQuery:
        return _FakeQuery(self, name)

    # -- engine --------------------------------------------------------------

    def _new_id(self, table: str) -> str:
        return f"{table}-{next(self._ids)}"

    def _check_rejections(self, table: str, rows: List[Dict[str, Any]]) -> None:
        for rejected_table, predicate, message in self._rejections:
            if rejected_table != table:
                continue
            for row in rows:
                if predicate(row):
                    raise APIError({"code": "23514", "message": message, "details": None, "hint": None})

    def _execute(self, query: _FakeQuery) -> _Result:
        self.calls.append((query.table, query.op, list(query.filters)))

        if query.table in self._failing:
            raise APIError({"code": "XX000", "message": f"{query.table} unavailable", "details": None, "hint": None})

        if query.op == "select":
            return self._do_select(query)

        handler = getattr(self, f"_do_{query.op}")
        return _Result(handler(query))

    def _do_select(self, query: _FakeQuery):
        rows = [row for row in self.tables[query.table] if query.matches(row)]

        if query.order_by:
            column, desc = query.order_by
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            present.sort(key=lambda r: r[column], reverse=desc)
            rows = present + missing

        count = len(rows) if query.count else None
        rows = rows[query.offset_n:]
        if query.limit_n is not None:
            rows = rows[:query.limit_n]

        if query.columns.strip() == "*":
            return _Result(copy.deepcopy(rows), count)

        wanted = [c.strip() for c in query.columns.split(",")]
        return _Result([{c: copy.deepcopy(row.get(c)) for c in wanted} for row in rows], count)

    def _as_list(self, payload) -> List[Dict[str, Any]]:
        return [dict(r) for r in (payload if isinstance(payload, list) else [payload])]

    def _do_insert(self, query: _FakeQuery):
        rows = self._as_list(query.payload)
        self._check_rejections(query.table, rows)

        key = UNIQUE_KEYS.get(query.table)
        if key:
            existing = {str(r.get(key)) for r in self.tables[query.table]}
            for row in rows:
                if str(row.get(key)) in existing:
                    raise APIError({
                        "code": "23505",
                        "message": f'duplicate key value violates unique constraint "{query.table}_{key}_key"',
                        "details": None,
                        "hint": None,
                    })

        inserted = []
        for row in rows:
            row.setdefault("id", self._new_id(query.table))
            self.tables[query.table].append(row)
            inserted.append(copy.deepcopy(row))
        return inserted

    def _do_upsert(self, query: _FakeQuery):
        rows = self._as_list(query.payload)
        self._check_rejections(query.table, rows)

        key = query.on_conflict or UNIQUE_KEYS[query.table]
        keys = [str(r.get(key)) for r in rows]
        if len(keys) != len(set(keys)):
            raise APIError({
                "code": "21000",
                "message": "ON CONFLICT DO UPDATE command cannot affect row a second time",
                "details": None,
                "hint": None,
            })

        written = []
        for row in rows:
            current = next((r for r in self.tables[query.table] if str(r.get(key)) == str(row.get(key))), None)
            if current is not None:
                current.update(row)
                written.append(copy.deepcopy(current))
            else:
                row.setdefault("id", self._new_id(query.table))
                self.tables[query.table].append(row)
                written.append(copy.deepcopy(row))
        return written

    def _do_update(self, query: _FakeQuery):
        targets = [row for row in self.tables[query.table] if query.matches(row)]
        self._check_rejections(query.table, [{**row, **query.payload} for row in targets])

        for row in targets:
            row.update(copy.deepcopy(query.payload))
        return copy.deepcopy(targets)

    def _do_delete(self, query: _FakeQuery):
        removed = [row for row in self.tables[query.table] if query.matches(row)]
        self.tables[query.table] = [row for row in self.tables[query.table] if not query.matches(row)]
        return copy.deepcopy(removed)


# ============================================================================
# CLOCK
# ============================================================================

class StepClock:
    """Deterministic UTC clock: every call moves time forward one second."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeTokenProvider:
    def __init__(self, token: str = "pp-token", error: Optional[Exception] = None):
        self.token = token
        self.error = error
        self.calls = 0

    async def get_valid_access_token(self) -> str:
        self.calls += 1
        if self.error:
            raise self.error
        return self.token


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def token_provider() -> FakeTokenProvider:
    return FakeTokenProvider()
