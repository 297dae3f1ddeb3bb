"""
packing.py — AI packing list suggestions.

Route:
  POST /api/v1/packing/suggestions — signed-in users only (10/minute)

Gemini is asked for 15-20 items as {"items": [{category, name, quantity}]}.
Whatever comes back is coerced into PackingItem: unknown categories become
"other", missing or bad quantities become 1, nameless items are dropped.
Saving the list against a trip is the client's job.
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from travelai.ai.gemini_client import gemini_client
from travelai.ai.json_repair import repair_and_parse_json
from travelai.core.config import settings
from travelai.core.rate_limit import limiter
from travelai.models.packing import (
    PACKING_CATEGORIES,
    PackingItem,
    PackingSuggestionRequest,
    PackingSuggestionResponse,
)
from travelai.routes.deps import UserId

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/packing", tags=["packing"])

_PACKING_PROMPT = """\
Generate a packing list for a trip to {destination} from {start} to {end}.

Return ONLY valid JSON (no markdown) with this structure:
{{
  "items": [
    {{"category": "clothing", "name": "T-shirts", "quantity": 4}},
    {{"category": "toiletries", "name": "Toothbrush", "quantity": 1}},
    ...
  ]
}}

Categories: {categories}
Include 15-20 essential items."""


def _to_packing_item(raw: object) -> PackingItem | None:
    if not isinstance(raw, dict):
        return None
    name = str(raw.get("name") or "").strip()
    if not name:
        return None

    category = str(raw.get("category") or "other").strip().lower()
    if category not in PACKING_CATEGORIES:
        category = "other"

    try:
        quantity = max(1, int(raw.get("quantity") or 1))
    except (TypeError, ValueError, OverflowError):
        quantity = 1

    return PackingItem(category=category, name=name[:120], quantity=quantity)


@router.post("/suggestions", response_model=PackingSuggestionResponse)
@limiter.limit(settings.ai_rate_limit)
async def packing_suggestions(request: Request, payload: PackingSuggestionRequest, user_id: UserId):
    """Suggest a packing list for a destination and date range."""
    prompt = _PACKING_PROMPT.format(
        destination=payload.destination,
        start=payload.start_date.isoformat(),
        end=payload.end_date.isoformat(),
        categories=", ".join(PACKING_CATEGORIES),
    )
    try:
        raw = await gemini_client.generate(prompt, response_key="packing_list")
    except Exception as exc:
        logger.error("Packing list generation failed for user %s: %s", user_id, exc)
        raise HTTPException(status_code=500, detail="Failed to generate packing list")

    data = repair_and_parse_json(raw)
    raw_items = data.get("items") if isinstance(data, dict) else None
    if not isinstance(raw_items, list):
        raise HTTPException(status_code=502, detail="Invalid response format. Please try again.")

    items = [item for item in (_to_packing_item(r) for r in raw_items) if item is not None]
    logger.info("Suggested %d packing items for %s", len(items), payload.destination)
    return PackingSuggestionResponse(destination=payload.destination, items=items)
