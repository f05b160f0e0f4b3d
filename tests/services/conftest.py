"""
Shared fakes for service tests.

FakeSupabase keeps tables in memory and answers the RPCs the services use,
so tests can assert on resulting rows instead of mock call chains.
FakeFunctions stands in for EdgeFunctionClient with per-function handlers.
"""

import itertools
from types import SimpleNamespace
from uuid import uuid4

import pytest

from compintel.services.background import InlineTaskRunner
from compintel.services.competitor_analysis_service import CompetitorAnalysisService
from compintel.services.resilience import RateLimiter


class FakeQuery:
    def __init__(self, db, table):
        self.db = db
        self.table_name = table
        self.op = "select"
        self.payload = None
        self.filters = []
        self._order = None
        self._limit = None

    def select(self, *columns, **kwargs):
        return self

    def insert(self, values):
        self.op, self.payload = "insert", values
        return self

    def update(self, values):
        self.op, self.payload = "update", values
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def limit(self, n):
        self._limit = n
        return self

    def execute(self):
        if self.table_name in self.db.failing_tables:
            raise self.db.failing_tables[self.table_name]

        rows = self.db.tables.setdefault(self.table_name, [])
        matched = [r for r in rows if all(r.get(c) == v for c, v in self.filters)]

        if self.op == "insert":
            row = {"id": str(uuid4()), "created_at": next(self.db.clock), **self.payload}
            rows.append(row)
            data = [dict(row)]
        elif self.op == "update":
            for row in matched:
                row.update(self.payload)
            data = [dict(r) for r in matched]
        elif self.op == "delete":
            for row in matched:
                rows.remove(row)
            data = [dict(r) for r in matched]
        else:
            if self._order:
                column, desc = self._order
                matched = sorted(matched, key=lambda r: r.get(column) or 0, reverse=desc)
            if self._limit is not None:
                matched = matched[:self._limit]
            data = [dict(r) for r in matched]

        self.db.queries.append((self.table_name, self.op, list(self.filters)))
        return SimpleNamespace(data=data)


class FakeRpc:
    def __init__(self, db, name, params):
        self.db = db
        self.name = name
        self.params = params

    def execute(self):
        self.db.rpc_calls.append((self.name, self.params))
        handler = self.db.rpc_handlers[self.name]
        if isinstance(handler, Exception):
            raise handler
        return SimpleNamespace(data=handler(self.params))


class FakeSupabase:
    """In-memory stand-in for supabase.Client."""

    def __init__(self, user_id="user-1"):
        self.user_id = user_id
        self.session_error = None
        self.tables = {}
        self.failing_tables = {}
        self.queries = []
        self.rpc_calls = []
        self.clock = itertools.count(1)
        self.auth = SimpleNamespace(get_session=self._get_session)
        self.rpc_handlers = {
            "get_user_competitor_analyses": self._get_user_analyses,
            "check_user_cost_allowed": lambda p: {"allowed": True, "remaining": 10.0, "monthly_limit": 20.0},
            "insert_competitor_analysis_progress": self._insert_progress,
            "update_competitor_analysis_progress": self._update_progress,
            "insert_analysis_run": self._insert_run,
        }

    def _get_session(self):
        if self.session_error is not None:
            raise self.session_error
        if not self.user_id:
            return None
        return SimpleNamespace(user=SimpleNamespace(id=self.user_id))

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params=None):
        return FakeRpc(self, name, params or {})

    def rows(self, table):
        return self.tables.get(table, [])

    def rpc_names(self):
        return [name for name, _ in self.rpc_calls]

    def _get_user_analyses(self, params):
        return [dict(r) for r in self.rows("competitor_analyses") if r.get("user_id") == params["user_id_param"]]

    def _insert_progress(self, params):
        row = {
            "id": f"progress-{len(self.rows('competitor_analysis_progress')) + 1}",
            "created_at": next(self.clock),
            "session_id": params["session_id_param"],
            "user_id": params["user_id_param"],
            "total_competitors": params["total_competitors_param"],
            "metadata": params["metadata_param"],
            "status": "running",
        }
        self.tables.setdefault("competitor_analysis_progress", []).append(row)
        return row["id"]

    def _update_progress(self, params):
        for row in self.rows("competitor_analysis_progress"):
            if row["session_id"] == params["session_id_param"]:
                row["status"] = params["status_param"]
                row["error_message"] = params["error_message_param"]
        return None

    def _insert_run(self, params):
        row = {
            "id": f"run-{len(self.rows('analysis_runs')) + 1}",
            "created_at": next(self.clock),
            "user_id": params["user_id_param"],
            "run_type": params["run_type_param"],
            "session_id": params["session_id_param"],
            "input_data": params["input_data_param"],
            "status": "running",
        }
        self.tables.setdefault("analysis_runs", []).append(row)
        return row["id"]


class FakeFunctions:
    """Stand-in for EdgeFunctionClient; handlers may be values, callables or exceptions."""

    def __init__(self, db=None):
        self.db = db
        self.calls = []
        self.handlers = {
            "unified-api-key-manager": self._key_manager,
            "competitor-analysis-gate": {"can_proceed": True, "reasons": []},
            "competitor-analysis": {"success": True, "results": {"competitors": [{"name": "Acme Corp"}]}},
            "update-analysis-run": self._update_run,
            "enrich-analysis-with-master-profile": {"success": True},
            "aggregate-analysis": {"success": True},
        }
        self.key_statuses = [{"provider": "openai", "is_active": True, "status": "active"}]
        self.validity = {}

    def invoke(self, function_name, body=None):
        self.calls.append((function_name, body))
        handler = self.handlers.get(function_name, {})
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            return handler(body)
        return handler

    def called(self, function_name):
        return [body for name, body in self.calls if name == function_name]

    def names(self):
        return [name for name, _ in self.calls]

    def _key_manager(self, body):
        if body["action"] == "get_all_statuses":
            return {"success": True, "result": self.key_statuses}
        outcome = self.validity.get(body["provider"], True)
        if isinstance(outcome, Exception):
            raise outcome
        return {"success": True, "result": {"isValid": outcome}}

    def _update_run(self, body):
        if self.db is not None:
            for row in self.db.rows("analysis_runs"):
                if row["id"] == body["runId"]:
                    row["status"] = "completed" if body["action"] == "complete" else "failed"
                    row["error_message"] = body.get("errorMessage")
        return {"success": True}


@pytest.fixture
def db():
    return FakeSupabase()


@pytest.fixture
def functions(db):
    return FakeFunctions(db)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def service(db, functions, sleeps):
    """CompetitorAnalysisService wired to the fakes, with no real sleeping."""
    return CompetitorAnalysisService(
        supabase=db,
        functions=functions,
        rate_limiter=RateLimiter(sleep=sleeps.append),
        task_runner=InlineTaskRunner(),
        sleep=sleeps.append,
    )
