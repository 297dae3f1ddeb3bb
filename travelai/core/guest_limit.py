"""
guest_limit.py — Daily quota for guest (signed-out) use of the AI endpoints.

Fixed-window counter keyed by client IP, persisted in the MongoDB
`rate_limits` collection so every API instance enforces the same cap:

    { "ip": "203.0.113.7", "count": 3, "reset_at": ISODate(...) }

HOW A CHECK WORKS
─────────────────
Each check is ONE atomic find_one_and_update with upsert=True. The update
is an aggregation pipeline, so the server decides reset / increment / keep
in the same write that applies it:

  no document           → inserted with count=1, reset_at=now+window
  reset_at <= now       → count=1, reset_at=now+window (stale count dropped)
  count >= limit        → fields left as they are (request rejected)
  otherwise             → count+1

The limiter asks for the document as it was BEFORE the write and derives
the decision from it. Concurrent requests therefore serialise on the
document and a burst can never admit more than `limit` requests.

TTL index on reset_at lets MongoDB reap expired entries. The check never
depends on that reaper having run.

Known limitation: the identifier is whatever address the proxy reports.
It is a soft abuse deterrent, not a security boundary.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from travelai.core.config import settings

logger = logging.getLogger(__name__)

RATE_LIMIT_COLLECTION = "rate_limits"


class GuestLimitUnavailable(RuntimeError):
    """Raised when there is no store to count guest requests against."""


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # epoch milliseconds

    def headers(self) -> dict[str, str]:
        """X-RateLimit-* response headers for this decision."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


class RateLimitStore(Protocol):
    async def consume(
        self, identifier: str, now: datetime, reset_at: datetime, limit: int
    ) -> Optional[dict[str, Any]]:
        """Atomically apply one request; return the entry as it was before (None if new)."""
        ...

    async def ensure_indexes(self) -> bool:
        ...


# ── Helpers ───────────────────────────────────────────────────────────────────

def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Motor hands back naive datetimes unless the client is tz_aware
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _epoch_ms(value: datetime) -> int:
    return int(_as_utc(value).timestamp() * 1000)


def _is_expired(entry: Optional[dict[str, Any]], now: datetime) -> bool:
    if entry is None or entry.get("reset_at") is None:
        return True
    return _as_utc(entry["reset_at"]) <= now


def _consume_pipeline(now: datetime, reset_at: datetime, limit: int) -> list[dict]:
    """Update pipeline applying one request to an entry, evaluated server-side."""
    # A missing reset_at sorts before any date, so new documents count as expired
    expired = {"$lte": ["$reset_at", now]}
    count = {"$ifNull": ["$count", 0]}
    return [
        {
            "$set": {
                "count": {
                    "$cond": [
                        expired,
                        1,
                        {"$cond": [{"$lt": [count, limit]}, {"$add": [count, 1]}, count]},
                    ]
                },
                "reset_at": {"$cond": [expired, reset_at, "$reset_at"]},
            }
        }
    ]


def _apply_request(
    entry: Optional[dict[str, Any]], identifier: str, now: datetime, reset_at: datetime, limit: int
) -> dict[str, Any]:
    """In-process twin of _consume_pipeline."""
    if _is_expired(entry, now):
        return {"ip": identifier, "count": 1, "reset_at": reset_at}
    count = int(entry.get("count") or 0)
    if count >= limit:
        return entry
    return {**entry, "count": count + 1}


# ── Stores ────────────────────────────────────────────────────────────────────

class MongoRateLimitStore:
    """Counter store backed by a Motor collection."""

    def __init__(self, db, collection: str = RATE_LIMIT_COLLECTION) -> None:
        self._collection = db[collection]

    async def consume(
        self, identifier: str, now: datetime, reset_at: datetime, limit: int
    ) -> Optional[dict[str, Any]]:
        pipeline = _consume_pipeline(now, reset_at, limit)
        try:
            return await self._find_and_apply(identifier, pipeline)
        except DuplicateKeyError:
            # Two first requests raced on the unique ip index. The loser
            # re-runs the same atomic update against the winner's document.
            logger.debug("Concurrent insert for rate limit entry %r, reapplying", identifier)
            return await self._find_and_apply(identifier, pipeline)

    async def _find_and_apply(self, identifier: str, pipeline: list[dict]) -> Optional[dict[str, Any]]:
        return await self._collection.find_one_and_update(
            {"ip": identifier},
            pipeline,
            upsert=True,
            return_document=ReturnDocument.BEFORE,
        )

    async def ensure_indexes(self) -> bool:
        """Idempotent index creation: unique ip + TTL on reset_at."""
        try:
            await self._collection.create_index(
                [("ip", ASCENDING)], unique=True, name="ip_unique"
            )
            await self._collection.create_index(
                [("reset_at", ASCENDING)], expireAfterSeconds=0, name="reset_at_ttl"
            )
        except PyMongoError as exc:
            logger.error("Failed to create rate limit indexes: %s", exc)
            return False
        logger.info("Rate limit indexes ready on '%s'", self._collection.name)
        return True


class InMemoryRateLimitStore:
    """
    Process-local store for tests and local dev without MongoDB.

    Serialises requests with an asyncio.Lock. Only correct for a single
    process; production always uses MongoRateLimitStore.
    """

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def consume(
        self, identifier: str, now: datetime, reset_at: datetime, limit: int
    ) -> Optional[dict[str, Any]]:
        async with self._lock:
            before = self._entries.get(identifier)
            self._entries[identifier] = _apply_request(before, identifier, now, reset_at, limit)
            return dict(before) if before is not None else None

    def get(self, identifier: str) -> Optional[dict[str, Any]]:
        entry = self._entries.get(identifier)
        return dict(entry) if entry is not None else None

    def put(self, identifier: str, count: int, reset_at: datetime) -> None:
        self._entries[identifier] = {"ip": identifier, "count": count, "reset_at": reset_at}

    async def ensure_indexes(self) -> bool:
        return True


# ── Limiter ───────────────────────────────────────────────────────────────────

class GuestRateLimiter:
    """
    Fixed-window guest quota.

    Args:
        store:  Where counters live (MongoRateLimitStore in production).
        limit:  Requests allowed per window.
        window: Window length.
        clock:  Returns the current aware UTC datetime; swapped in tests.
    """

    def __init__(
        self,
        store: RateLimitStore,
        limit: int = 5,
        window: timedelta = timedelta(hours=24),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window <= timedelta(0):
            raise ValueError("window must be positive")
        self.store = store
        self.limit = limit
        self.window = window
        self.clock = clock or _utcnow

    async def check(self, identifier: str) -> RateLimitResult:
        """
        Count one request from *identifier* and decide whether it may proceed.

        Store errors propagate; callers choose whether that fails open or closed.
        """
        now = _as_utc(self.clock())
        reset_at = now + self.window

        before = await self.store.consume(identifier, now, reset_at, self.limit)

        if _is_expired(before, now):
            return RateLimitResult(True, self.limit, self.limit - 1, _epoch_ms(reset_at))

        count = int(before.get("count") or 0)
        current_reset = _epoch_ms(before["reset_at"])
        if count >= self.limit:
            logger.info("Guest rate limit exceeded for %s (%d/%d)", identifier, count, self.limit)
            return RateLimitResult(False, self.limit, 0, current_reset)

        return RateLimitResult(True, self.limit, self.limit - count - 1, current_reset)


def limiter_for(db) -> GuestRateLimiter:
    """Build a limiter over *db* using the configured limit and window."""
    if db is None:
        raise GuestLimitUnavailable("Database unavailable for guest rate limiting")
    return GuestRateLimiter(
        MongoRateLimitStore(db),
        limit=settings.guest_rate_limit,
        window=timedelta(hours=settings.guest_rate_window_hours),
    )


async def check_rate_limit(identifier: str, db=None) -> RateLimitResult:
    """Check the guest quota for *identifier* against the app database."""
    if db is None:
        from travelai.core.database import get_db

        db = get_db()
    return await limiter_for(db).check(identifier)


async def ensure_rate_limit_indexes(db=None) -> bool:
    """
    Create the rate_limits indexes. Run once at startup.

    Never raises: a missing database or index error is logged and the
    process carries on.
    """
    if db is None:
        from travelai.core.database import get_db

        db = get_db()
    if db is None:
        logger.warning("Skipping rate limit index setup: database unavailable")
        return False
    return await MongoRateLimitStore(db).ensure_indexes()
