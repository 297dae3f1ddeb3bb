"""
test_explore.py — Tests for POST /api/v1/explore.

Runs in mock AI mode. The rate_limits collection is the FakeDB from
conftest.py, injected through the get_db dependency.
"""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from pymongo.errors import ServerSelectionTimeoutError

_PAYLOAD = {
    "query": "Lisbon",
    "experience": "food and history",
    "date_range": {"from": "2026-05-01", "to": "2026-05-05"},
}
_GUEST_URL = "/api/v1/explore?mode=guest"
_URL = "/api/v1/explore"


@pytest.fixture()
async def explore_client(fake_db):
    from travelai.core.database import get_db
    from travelai.main import app

    app.dependency_overrides[get_db] = lambda: fake_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_db, None)


def _gemini_returns(text):
    from travelai.ai.gemini_client import gemini_client

    return patch.object(gemini_client, "generate", AsyncMock(return_value=text))


def _gemini_raises(exc):
    from travelai.ai.gemini_client import gemini_client

    return patch.object(gemini_client, "generate", AsyncMock(side_effect=exc))


# ══ Signed-in callers ══════════════════════════════════════════════════════════

class TestSignedIn:
    async def test_returns_repaired_guide(self, explore_client, auth_headers):
        r = await explore_client.post(_URL, json=_PAYLOAD, headers=auth_headers)

        assert r.status_code == 200
        data = r.json()
        assert data["attractions"][0] == "Old Town walking tour"
        assert len(data["accommodation"]) == 2
        assert "estimated_budget" in data

    async def test_no_rate_limit_headers(self, explore_client, auth_headers):
        r = await explore_client.post(_URL, json=_PAYLOAD, headers=auth_headers)
        assert "x-ratelimit-remaining" not in r.headers

    async def test_does_not_touch_guest_quota(self, explore_client, auth_headers, fake_db):
        await explore_client.post(_GUEST_URL, json=_PAYLOAD, headers=auth_headers)
        assert fake_db.rate_limits.calls == []

    async def test_works_without_database(self, explore_client, auth_headers):
        from travelai.core.database import get_db
        from travelai.main import app

        app.dependency_overrides[get_db] = lambda: None
        r = await explore_client.post(_URL, json=_PAYLOAD, headers=auth_headers)
        assert r.status_code == 200

    async def test_invalid_token_without_guest_mode_is_401(self, explore_client):
        r = await explore_client.post(_URL, json=_PAYLOAD, headers={"Authorization": "Bearer not.a.jwt"})
        assert r.status_code == 401


# ══ Guest callers ══════════════════════════════════════════════════════════════

class TestGuest:
    async def test_anonymous_without_guest_mode_is_401(self, explore_client, fake_db):
        r = await explore_client.post(_URL, json=_PAYLOAD)
        assert r.status_code == 401
        assert fake_db.rate_limits.calls == []

    async def test_guest_query_param(self, explore_client):
        r = await explore_client.post(_GUEST_URL, json=_PAYLOAD)

        assert r.status_code == 200
        assert r.headers["x-ratelimit-limit"] == "5"
        assert r.headers["x-ratelimit-remaining"] == "4"
        assert int(r.headers["x-ratelimit-reset"]) > 0

    async def test_guest_mode_from_referer(self, explore_client):
        r = await explore_client.post(
            _URL, json=_PAYLOAD, headers={"Referer": "http://localhost:3000/explore?mode=guest"}
        )
        assert r.status_code == 200
        assert r.headers["x-ratelimit-remaining"] == "4"

    async def test_sixth_guest_request_is_429(self, explore_client):
        for expected_remaining in ("4", "3", "2", "1", "0"):
            r = await explore_client.post(_GUEST_URL, json=_PAYLOAD)
            assert r.status_code == 200
            assert r.headers["x-ratelimit-remaining"] == expected_remaining

        r = await explore_client.post(_GUEST_URL, json=_PAYLOAD)

        assert r.status_code == 429
        data = r.json()
        assert data["error"] == "Rate limit exceeded"
        assert data["limit"] == 5
        assert data["remaining"] == 0
        assert str(data["reset"]) == r.headers["x-ratelimit-reset"]

    async def test_rejected_guest_does_not_call_gemini(self, explore_client, fake_db):
        for _ in range(5):
            await explore_client.post(_GUEST_URL, json=_PAYLOAD)

        with _gemini_returns("{}") as mock_generate:
            r = await explore_client.post(_GUEST_URL, json=_PAYLOAD)

        assert r.status_code == 429
        mock_generate.assert_not_called()
        assert fake_db.rate_limits.docs["127.0.0.1"]["count"] == 5

    async def test_quota_keyed_by_forwarded_address(self, explore_client, fake_db):
        for _ in range(5):
            await explore_client.post(_GUEST_URL, json=_PAYLOAD, headers={"X-Forwarded-For": "203.0.113.7"})

        blocked = await explore_client.post(
            _GUEST_URL, json=_PAYLOAD, headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
        )
        other = await explore_client.post(_GUEST_URL, json=_PAYLOAD, headers={"X-Forwarded-For": "198.51.100.9"})

        assert blocked.status_code == 429
        assert other.status_code == 200
        assert set(fake_db.rate_limits.docs) == {"203.0.113.7", "198.51.100.9"}

    async def test_no_database_fails_closed(self, explore_client):
        from travelai.core.database import get_db
        from travelai.main import app

        app.dependency_overrides[get_db] = lambda: None
        r = await explore_client.post(_GUEST_URL, json=_PAYLOAD)

        assert r.status_code == 503

    async def test_store_error_fails_closed(self, explore_client, fake_db):
        fake_db.rate_limits.fail_with = ServerSelectionTimeoutError("No servers found")

        with _gemini_returns("{}") as mock_generate:
            r = await explore_client.post(_GUEST_URL, json=_PAYLOAD)

        assert r.status_code == 503
        mock_generate.assert_not_called()


# ══ Gemini failures ════════════════════════════════════════════════════════════

class TestGeminiFailures:
    async def test_prose_answer_is_502(self, explore_client, auth_headers):
        with _gemini_returns("I'm sorry, I cannot plan that trip."):
            r = await explore_client.post(_URL, json=_PAYLOAD, headers=auth_headers)

        assert r.status_code == 502
        assert r.json()["detail"] == "Invalid response format. Please try again."

    async def test_json_array_answer_is_502(self, explore_client, auth_headers):
        with _gemini_returns('["not", "an", "object"]'):
            r = await explore_client.post(_URL, json=_PAYLOAD, headers=auth_headers)
        assert r.status_code == 502

    async def test_empty_answer_is_502(self, explore_client, auth_headers):
        with _gemini_returns(""):
            r = await explore_client.post(_URL, json=_PAYLOAD, headers=auth_headers)
        assert r.status_code == 502

    async def test_guest_error_keeps_rate_limit_headers(self, explore_client):
        with _gemini_returns("no json at all"):
            r = await explore_client.post(_GUEST_URL, json=_PAYLOAD)

        assert r.status_code == 502
        assert r.headers["x-ratelimit-remaining"] == "4"

    async def test_nan_in_answer_is_502(self, explore_client, auth_headers):
        with _gemini_returns('{"budget": NaN}'):
            r = await explore_client.post(_URL, json=_PAYLOAD, headers=auth_headers)
        assert r.status_code == 502

    async def test_overflowing_number_in_answer_is_502(self, explore_client, auth_headers):
        with _gemini_returns('{"budget": 1e999}'):
            r = await explore_client.post(_URL, json=_PAYLOAD, headers=auth_headers)
        assert r.status_code == 502

    async def test_truncated_answer_is_salvaged(self, explore_client, auth_headers):
        with _gemini_returns('{"attractions": ["Fort", "Beach"], "accommodation": [{"name": "Hostel"}, {"na'):
            r = await explore_client.post(_URL, json=_PAYLOAD, headers=auth_headers)

        assert r.status_code == 200
        assert r.json() == {"attractions": ["Fort", "Beach"], "accommodation": [{"name": "Hostel"}]}

    async def test_timeout_is_504(self, explore_client, auth_headers):
        with _gemini_raises(TimeoutError("Deadline exceeded")):
            r = await explore_client.post(_URL, json=_PAYLOAD, headers=auth_headers)

        assert r.status_code == 504
        assert "Slow Internet Connection" in r.json()["detail"]

    async def test_network_error_message_is_504(self, explore_client, auth_headers):
        with _gemini_raises(RuntimeError("network unreachable")):
            r = await explore_client.post(_URL, json=_PAYLOAD, headers=auth_headers)
        assert r.status_code == 504

    async def test_other_errors_are_500(self, explore_client, auth_headers):
        with _gemini_raises(RuntimeError("quota exhausted")):
            r = await explore_client.post(_URL, json=_PAYLOAD, headers=auth_headers)
        assert r.status_code == 500


# ══ Validation + per-minute throttle ══════════════════════════════════════════

class TestRequestHandling:
    async def test_missing_date_range_is_422(self, explore_client, auth_headers):
        r = await explore_client.post(_URL, json={"query": "Lisbon"}, headers=auth_headers)
        assert r.status_code == 422

    async def test_empty_query_is_422(self, explore_client, auth_headers):
        r = await explore_client.post(_URL, json={**_PAYLOAD, "query": ""}, headers=auth_headers)
        assert r.status_code == 422

    async def test_get_method_not_allowed(self, explore_client):
        r = await explore_client.get(_URL)
        assert r.status_code == 405

    async def test_per_minute_throttle_returns_429(self, explore_client, auth_headers):
        from travelai.core.rate_limit import limiter

        with patch.object(limiter.limiter, "hit", return_value=False):
            r = await explore_client.post(_URL, json=_PAYLOAD, headers=auth_headers)

        assert r.status_code == 429
        assert "error" in r.json()
