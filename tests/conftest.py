"""Pytest configuration and fixtures."""

import copy
import itertools
import json
import os

import httpx
import pytest
from unittest.mock import MagicMock

# Required settings must exist before the config is first loaded
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("WEBHOOK_SECRET", "test_secret")

from inventory_tracker.api.store_client import StoreClient, OBJECT_MEDIA_TYPE
from inventory_tracker.models.inventory import InventoryItem
from inventory_tracker.services.change_feed import ChangeFeed
from inventory_tracker.services.inventory_service import InventoryService


RAW_ITEMS = [
    {
        "id": "1",
        "name": "Laptop Computer",
        "sku": "ELEC-001",
        "quantity": 25,
        "category": "Electronics",
        "low_stock_threshold": 5,
        "description": "15-inch business laptop",
        "created_at": "2024-01-01T10:00:00+00:00",
        "updated_at": "2024-01-01T10:00:00+00:00",
    },
    {
        "id": "2",
        "name": "Office Chair",
        "sku": "FURN-001",
        "quantity": 3,
        "category": "Furniture",
        "low_stock_threshold": 5,
        "description": None,
        "created_at": "2024-01-02T10:00:00+00:00",
        "updated_at": "2024-01-02T10:00:00+00:00",
    },
    {
        "id": "3",
        "name": "USB Cable",
        "sku": "ELEC-002",
        "quantity": 10,
        "category": "Electronics",
        "low_stock_threshold": None,
        "description": None,
        "created_at": "2024-01-03T10:00:00+00:00",
        "updated_at": "2024-01-03T10:00:00+00:00",
    },
]

RAW_CATEGORIES = [
    {"id": "c1", "name": "Furniture", "description": "Office furniture", "created_at": "2024-01-01T09:00:00+00:00"},
    {"id": "c2", "name": "Electronics", "description": None, "created_at": "2024-01-01T09:00:00+00:00"},
]


class FakePostgrest:
    """In-memory stand-in for the PostgREST endpoint, served through ``httpx.MockTransport``.

    Supports the subset of the query syntax the store client emits: ``eq``,
    ``gte``, ``lte``, ``or=(col.ilike.*term*,...)``, ``order``, ``limit``,
    ``offset`` and single-object responses.
    """

    UNIQUE_COLUMNS = {"inventory_items": "sku", "categories": "name"}
    MODIFIERS = ("select", "order", "limit", "offset")

    def __init__(self):
        self.tables = {"inventory_items": [], "categories": []}
        self.requests = []
        self.fail_with = None  # (status_code, body) answered to every request
        self._ids = itertools.count(100)

    def seed(self, table, rows):
        for row in rows:
            self.tables[table].append(self._with_defaults(table, dict(row)))

    def requests_with(self, method):
        return [request for request in self.requests if request.method == method]

    # ------------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self.fail_with:
            status_code, body = self.fail_with
            return httpx.Response(status_code, json=body)

        table = request.url.path.rsplit("/", 1)[-1]
        rows = self.tables.get(table)
        if rows is None:
            return self._error(404, "42P01", f'relation "public.{table}" does not exist')

        params = request.url.params

        if request.method == "POST":
            payload = json.loads(request.content)
            new_rows = payload if isinstance(payload, list) else [payload]
            if self._violates_unique(table, rows, new_rows):
                return self._unique_error(table)
            created = [self._with_defaults(table, dict(row)) for row in new_rows]
            rows.extend(created)
            return self._respond(request, created, status_code=201)

        matched = [row for row in rows if self._matches(row, params)]

        if request.method == "GET":
            matched = self._page(self._order(matched, params), params)
            return self._respond(request, matched)

        if request.method == "PATCH":
            changes = json.loads(request.content)
            unique = self.UNIQUE_COLUMNS[table]
            if unique in changes:
                others = [row for row in rows if row not in matched]
                if any(row[unique] == changes[unique] for row in others):
                    return self._unique_error(table)
            for row in matched:
                row.update(changes)
                if "updated_at" in row:
                    row["updated_at"] = "2024-02-01T00:00:00+00:00"
            return self._respond(request, matched)

        if request.method == "DELETE":
            for row in matched:
                rows.remove(row)
            return httpx.Response(204)

        return self._error(405, "PGRST000", "Method not allowed")

    # ------------------------------------------------------------------

    def _with_defaults(self, table, row):
        row.setdefault("id", str(next(self._ids)))
        row.setdefault("created_at", "2024-01-31T00:00:00+00:00")
        if table == "inventory_items":
            row.setdefault("updated_at", row["created_at"])
        return row

    def _violates_unique(self, table, rows, new_rows):
        unique = self.UNIQUE_COLUMNS[table]
        seen = {row[unique] for row in rows}
        for row in new_rows:
            if row[unique] in seen:
                return True
            seen.add(row[unique])
        return False

    def _matches(self, row, params):
        for key, value in params.multi_items():
            if key in self.MODIFIERS:
                continue
            if key == "or":
                if not self._matches_any(row, value):
                    return False
                continue

            op, _, operand = value.partition(".")
            actual = row.get(key)
            if op == "eq" and str(actual) != operand:
                return False
            if op == "gte" and (actual is None or actual < int(operand)):
                return False
            if op == "lte" and (actual is None or actual > int(operand)):
                return False
        return True

    @staticmethod
    def _matches_any(row, expression):
        for condition in expression.strip("()").split(","):
            column, _, rest = condition.partition(".")
            op, _, pattern = rest.partition(".")
            needle = pattern.strip('"').strip("*").lower()
            if op == "ilike" and needle in str(row.get(column) or "").lower():
                return True
        return False

    @staticmethod
    def _order(rows, params):
        order = params.get("order")
        if not order:
            return rows
        column, _, direction = order.partition(".")
        return sorted(rows, key=lambda row: row[column], reverse=direction == "desc")

    @staticmethod
    def _page(rows, params):
        offset = int(params.get("offset", 0))
        limit = params.get("limit")
        if limit is None:
            return rows[offset:]
        return rows[offset:offset + int(limit)]

    def _respond(self, request, rows, status_code=200):
        if request.headers.get("accept") == OBJECT_MEDIA_TYPE:
            if len(rows) != 1:
                return self._error(
                    406,
                    "PGRST116",
                    "JSON object requested, multiple (or no) rows returned",
                    details=f"The result contains {len(rows)} rows"
                )
            return httpx.Response(status_code, json=rows[0])
        return httpx.Response(status_code, json=rows)

    def _unique_error(self, table):
        unique = self.UNIQUE_COLUMNS[table]
        return self._error(
            409,
            "23505",
            f'duplicate key value violates unique constraint "{table}_{unique}_key"',
            details=f"Key ({unique}) already exists."
        )

    @staticmethod
    def _error(status_code, code, message, details=None):
        return httpx.Response(
            status_code,
            json={"code": code, "message": message, "details": details, "hint": None}
        )


@pytest.fixture
def backend():
    """Empty fake PostgREST backend."""
    return FakePostgrest()


@pytest.fixture
def seeded_backend(backend):
    """Fake backend holding three items and two categories."""
    backend.seed("inventory_items", copy.deepcopy(RAW_ITEMS))
    backend.seed("categories", copy.deepcopy(RAW_CATEGORIES))
    return backend


@pytest.fixture
def make_store():
    """Build a StoreClient wired to a request handler."""
    clients = []

    def _make(handler):
        client = StoreClient(
            url="https://test-project.supabase.co",
            key="test-anon-key",
            transport=httpx.MockTransport(handler)
        )
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.close()


@pytest.fixture
def mock_store():
    """Create a mock StoreClient."""
    store = MagicMock()
    store.project_url = "https://test-project.supabase.co"
    return store


@pytest.fixture
def feed():
    """A fresh change feed, independent of the process-wide one."""
    return ChangeFeed()


@pytest.fixture
def service(backend, make_store, feed):
    """InventoryService over the (possibly seeded) fake backend."""
    return InventoryService(make_store(backend.handler), feed=feed)


@pytest.fixture
def raw_items():
    return copy.deepcopy(RAW_ITEMS)


@pytest.fixture
def sample_items():
    """Canonical items: one well stocked, one below threshold, one exactly at threshold."""
    return [
        InventoryItem(id="1", name="Laptop Computer", sku="ELEC-001", quantity=25,
                      category="Electronics", low_stock_threshold=5),
        InventoryItem(id="2", name="Office Chair", sku="FURN-001", quantity=3,
                      category="Furniture", low_stock_threshold=5),
        InventoryItem(id="3", name="USB Cable", sku="ELEC-002", quantity=10,
                      category="Electronics", low_stock_threshold=10),
    ]
