"""
rate_limit.py — Per-minute throttle for AI calls.

Uses slowapi (a Starlette-compatible wrapper around the `limits` library).
Requests are keyed by client IP address.

This sits in front of the guest quota in guest_limit.py: slowapi keeps
short-lived in-process counters that smooth bursts from any caller,
while the guest quota is a daily fixed window persisted in MongoDB.

Usage in routes:
    from fastapi import Request
    from travelai.core.rate_limit import limiter

    @router.post("/some-ai-endpoint")
    @limiter.limit(settings.ai_rate_limit)
    async def my_endpoint(request: Request, payload: MyRequest):
        ...
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
