"""
explore.py — Destination guide endpoint.

Route:
  POST /api/v1/explore — one Gemini call that returns a structured guide
                         (attractions, best time, transport, stays, budget).

HOW A REQUEST FLOWS
───────────────────
1. Identity: a valid Bearer token means a signed-in user. Without one,
   the call must be in guest mode (?mode=guest, or a Referer carrying it),
   otherwise 401.
2. Guests spend one unit of their daily quota (core/guest_limit.py),
   keyed by client address. Over quota → 429 + X-RateLimit-* headers.
   If the quota store is unreachable the route fails closed with 503.
3. Everyone is also throttled per minute by slowapi.
4. Gemini's text answer goes through repair_and_parse_json(); if nothing
   usable comes back the client gets 502 and may retry.

Guest responses, including errors after the quota check, carry the
X-RateLimit-* headers so the UI can show "N searches left today".
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from travelai.ai.gemini_client import gemini_client
from travelai.ai.json_repair import repair_and_parse_json
from travelai.core.config import settings
from travelai.core.database import get_db
from travelai.core.guest_limit import GuestLimitUnavailable, RateLimitResult, check_rate_limit
from travelai.core.rate_limit import limiter
from travelai.models.explore import ExploreRequest, RateLimitError
from travelai.routes.deps import OptionalUserId, client_identifier, is_guest_mode

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["explore"])

_EXPLORE_PROMPT = """\
You are a travel expert. Provide detailed information about the destination "{query}" \
for someone interested in "{experience}" traveling from {start} to {end}.

Return ONLY valid JSON (no markdown, no code blocks) with these exact keys:
{{
  "attractions": ["attraction 1", "attraction 2", ...],
  "best_time": "description of best times to visit",
  "transportation": ["option 1", "option 2", "option 3"],
  "accommodation": [{{"name": "Hotel/Type", "price_range": "₹X,XXX - ₹X,XXX per night"}}],
  "weather": "brief weather description",
  "estimated_budget": "₹X,XXX - ₹X,XXX per day",
  "personalized_suggestions": ["suggestion 1", "suggestion 2", "suggestion 3"]
}}

Keep each section concise but informative. Use INR (₹) for all prices."""


def _is_network_error(exc: Exception) -> bool:
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    message = str(exc).lower()
    return "network" in message or "timeout" in message or "deadline" in message


async def _spend_guest_quota(request: Request, db) -> RateLimitResult:
    identifier = client_identifier(request)
    try:
        return await check_rate_limit(identifier, db=db)
    except (GuestLimitUnavailable, PyMongoError) as exc:
        logger.error("Guest rate limit check failed for %s: %s", identifier, exc)
        raise HTTPException(status_code=503, detail="Guest mode is temporarily unavailable")


@router.post("/explore", status_code=200)
@limiter.limit(settings.ai_rate_limit)
async def explore(
    request: Request,
    payload: ExploreRequest,
    user_id: OptionalUserId,
    db=Depends(get_db),
):
    """
    Generate a destination guide with Gemini.

    Returns the parsed guide object as-is; only "is it a JSON object" is
    checked here, the UI tolerates missing sections.
    """
    guest = user_id is None and is_guest_mode(request)
    if user_id is None and not guest:
        raise HTTPException(status_code=401, detail="Unauthorized")

    rate_info: Optional[RateLimitResult] = None
    if guest:
        rate_info = await _spend_guest_quota(request, db)
        if not rate_info.allowed:
            body = RateLimitError(
                limit=rate_info.limit,
                remaining=rate_info.remaining,
                reset=rate_info.reset_at,
            )
            return JSONResponse(status_code=429, content=body.model_dump(), headers=rate_info.headers())

    headers = rate_info.headers() if rate_info else None

    prompt = _EXPLORE_PROMPT.format(
        query=payload.query,
        experience=payload.experience,
        start=payload.date_range.start,
        end=payload.date_range.end,
    )
    try:
        raw = await gemini_client.generate(prompt, response_key="destination_guide")
    except Exception as exc:
        logger.error("Destination guide generation failed for %r: %s", payload.query, exc)
        if _is_network_error(exc):
            raise HTTPException(
                status_code=504,
                detail="Slow Internet Connection. Please try again later.",
                headers=headers,
            )
        raise HTTPException(
            status_code=500,
            detail="Failed to process request. Please try again later.",
            headers=headers,
        )

    guide = repair_and_parse_json(raw) if raw else None
    if not isinstance(guide, dict):
        logger.warning("Unusable destination guide for %r (%d chars)", payload.query, len(raw or ""))
        raise HTTPException(
            status_code=502,
            detail="Invalid response format. Please try again.",
            headers=headers,
        )

    try:
        return JSONResponse(content=guide, headers=headers)
    except ValueError:
        # Overflowing numbers parse to inf, which JSONResponse refuses to encode
        logger.warning("Destination guide for %r is not serialisable", payload.query)
        raise HTTPException(
            status_code=502,
            detail="Invalid response format. Please try again.",
            headers=headers,
        )
