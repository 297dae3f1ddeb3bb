"""
MongoDB connection management using Motor (async driver).

A single DatabaseClient instance is shared across all requests via a
module-level singleton. FastAPI's dependency injection (get_db) gives
routes access without importing the singleton directly.

The connection is opened in FastAPI's lifespan (startup) and closed
on shutdown. Rate-limit indexes are ensured right after connecting.
"""

import logging
import re

import certifi
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from travelai.core.config import settings

logger = logging.getLogger(__name__)


class DatabaseClient:
    """
    Holds the Motor client and selected database.

    Tests replace .client and .db directly on the singleton.
    """

    client: AsyncIOMotorClient | None = None
    db: AsyncIOMotorDatabase | None = None


# Module-level singleton: all app code references this object
db_client = DatabaseClient()


async def connect_to_mongo() -> None:
    """
    Create the MongoDB connection and validate it with a ping.

    Called once at app startup (via lifespan). If MongoDB is unavailable
    the API still starts; guest AI endpoints then answer 503 because the
    rate limiter has no store to count against.
    """
    logger.info("Connecting to MongoDB at %s", _redact_uri(settings.mongo_uri))
    options = {
        "serverSelectionTimeoutMS": 5000,
        # reset_at comparisons are done against aware UTC datetimes
        "tz_aware": True,
    }
    if _uses_tls(settings.mongo_uri):
        # Atlas TLS needs certifi's CA bundle on some platforms
        options["tlsCAFile"] = certifi.where()
    try:
        db_client.client = AsyncIOMotorClient(settings.mongo_uri, **options)
        db_client.db = db_client.client[settings.mongo_db_name]
        await db_client.client.admin.command("ping")
        logger.info("MongoDB connection established (db: %s)", settings.mongo_db_name)
    except Exception as exc:
        logger.warning(
            "MongoDB unavailable at startup: %s. "
            "API running in degraded mode, guest endpoints will fail.",
            exc,
        )
        db_client.client = None
        db_client.db = None


async def close_mongo_connection() -> None:
    """Close the MongoDB connection gracefully on app shutdown."""
    if db_client.client is not None:
        db_client.client.close()
        logger.info("MongoDB connection closed")


def get_db() -> AsyncIOMotorDatabase | None:
    """
    FastAPI dependency: inject the database into route handlers.

    Returns None when MongoDB is unavailable so routes decide how to
    degrade.
    """
    return db_client.db


def _uses_tls(uri: str) -> bool:
    return uri.startswith("mongodb+srv://") or "tls=true" in uri or "ssl=true" in uri


def _redact_uri(uri: str) -> str:
    """Strip credentials from URI before logging."""
    return re.sub(r"://[^:]+:[^@]+@", "://<redacted>@", uri)
