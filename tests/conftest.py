"""
pytest configuration and shared fixtures for the TravelAI API tests.

Key concern: tests must not require a live MongoDB or Gemini API key.
We achieve this by:
  1. Patching connect_to_mongo / close_mongo_connection to no-ops so
     FastAPI's lifespan doesn't try to reach a real database.
  2. Setting db_client.client = None (disconnected) by default.
  3. Ensuring AI_MOCK_MODE=true so GeminiClient returns canned responses.
  4. Providing FakeDB, whose rate_limits collection evaluates the guest
     limiter's update pipeline the way MongoDB would.
"""

import os
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

# Set env vars BEFORE importing the app so Settings picks them up correctly
os.environ.setdefault("AI_MOCK_MODE", "true")
os.environ.setdefault("ENVIRONMENT", "test")


# ── Fake rate_limits collection ───────────────────────────────────────────────

def _eval(expr, doc):
    """Evaluate the aggregation operators used by the guest limiter pipeline."""
    if isinstance(expr, str) and expr.startswith("$"):
        return doc.get(expr[1:])
    if isinstance(expr, dict) and len(expr) == 1:
        op, args = next(iter(expr.items()))
        if op == "$cond":
            cond, then, otherwise = args
            return _eval(then, doc) if _eval(cond, doc) else _eval(otherwise, doc)
        if op == "$ifNull":
            value = _eval(args[0], doc)
            return value if value is not None else _eval(args[1], doc)
        if op in ("$lte", "$lt"):
            left, right = (_eval(a, doc) for a in args)
            if left is None:  # missing/null sorts before everything
                return True
            return left <= right if op == "$lte" else left < right
        if op == "$add":
            return sum(_eval(a, doc) for a in args)
    return expr


class FakeRateLimitCollection:
    """
    In-memory stand-in for the Motor `rate_limits` collection.

    find_one_and_update has no await before it mutates, so within one
    event loop it is atomic, like the server-side operation it mimics.
    """

    name = "rate_limits"

    def __init__(self):
        self.docs = {}
        self.calls = []
        self.indexes = []
        self.fail_with = None
        self.index_error = None
        self.duplicate_once = False

    async def find_one_and_update(self, query, update, upsert=False, return_document=ReturnDocument.BEFORE):
        self.calls.append(
            {"query": query, "update": update, "upsert": upsert, "return_document": return_document}
        )
        if self.fail_with is not None:
            raise self.fail_with

        key = query["ip"]
        before = self.docs.get(key)
        if before is None and not upsert:
            return None

        doc = dict(before) if before is not None else dict(query)
        for stage in update:
            doc.update({field: _eval(expr, doc) for field, expr in stage["$set"].items()})
        self.docs[key] = doc

        if self.duplicate_once and before is None:
            # Another instance won the insert race: its document is now stored
            self.duplicate_once = False
            raise DuplicateKeyError("E11000 duplicate key error collection: travelai.rate_limits")

        if return_document == ReturnDocument.BEFORE:
            return dict(before) if before is not None else None
        return dict(doc)

    async def create_index(self, keys, **kwargs):
        if self.index_error is not None:
            raise self.index_error
        self.indexes.append({"keys": keys, **kwargs})
        return kwargs.get("name", "index")


class FakeDB:
    def __init__(self):
        self.rate_limits = FakeRateLimitCollection()

    def __getitem__(self, name):
        if name == "rate_limits":
            return self.rate_limits
        raise KeyError(name)


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
async def mock_db():
    """
    Patch the MongoDB lifecycle for every test.

    - connect_to_mongo → no-op AsyncMock
    - close_mongo_connection → no-op AsyncMock
    - db_client.client / db_client.db → None (disconnected)
    """
    with (
        patch("travelai.core.database.connect_to_mongo", new_callable=AsyncMock),
        patch("travelai.core.database.close_mongo_connection", new_callable=AsyncMock),
    ):
        import travelai.core.database as db_module

        original_client = db_module.db_client.client
        original_db = db_module.db_client.db

        db_module.db_client.client = None
        db_module.db_client.db = None

        yield

        db_module.db_client.client = original_client
        db_module.db_client.db = original_db


@pytest.fixture(autouse=True)
def reset_slowapi():
    """Clear slowapi's in-memory per-minute counters between tests."""
    from travelai.core.rate_limit import limiter

    limiter.reset()
    yield


@pytest.fixture()
def fake_db():
    return FakeDB()


@pytest.fixture()
async def client(mock_db):  # noqa: ARG001 — mock_db must run first
    """HTTPX async test client wired to the FastAPI app."""
    from travelai.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def auth_headers():
    from travelai.core.security import mint_session_token

    return {"Authorization": f"Bearer {mint_session_token('user-123')}"}
