"""
Application configuration loaded from environment variables.

Uses pydantic-settings for type-safe env var parsing with automatic
.env file loading. All secrets are injected via environment, never
hard-coded.

To extend: add new fields here and document them in .env.example.
See https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ─── Core ──────────────────────────────────────────────────────
    environment: str = "development"
    debug: bool = False

    # ─── MongoDB ───────────────────────────────────────────────────
    # Local dev default matches a plain `docker run mongo` container.
    # In production, replace with an Atlas connection string.
    mongo_uri: str = "mongodb://localhost:27017/travelai"
    mongo_db_name: str = "travelai"

    # ─── CORS ──────────────────────────────────────────────────────
    cors_origins_str: str = "http://localhost:3000"

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins_str.split(",") if o.strip()]

    # ─── AI ────────────────────────────────────────────────────────
    # Get from https://aistudio.google.com/
    gemini_api_key: str = ""
    gemini_model: str = "gemini-1.5-flash"

    # When True, all AI calls return canned mock responses.
    # Always True in tests; set False in production with a real key.
    ai_mock_mode: bool = True

    # ─── Auth ──────────────────────────────────────────────────────
    # IMPORTANT: Change jwt_secret to a long random string in production.
    jwt_secret: str = "changeme-in-production-use-a-long-random-string"
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24

    # ─── Rate limiting ─────────────────────────────────────────────
    # Guest quota: fixed window persisted in MongoDB, keyed by client IP.
    guest_rate_limit: int = 5
    guest_rate_window_hours: int = 24
    # Per-minute throttle for every AI call, guests included (slowapi syntax).
    ai_rate_limit: str = "10/minute"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Don't fail on unknown env vars
    )


# Module-level singleton: import this everywhere instead of instantiating Settings()
settings = Settings()
