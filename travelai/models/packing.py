"""
packing.py — Pydantic schemas for AI packing suggestions.
"""

from datetime import date
from typing import Literal

from pydantic import BaseModel, Field, model_validator

PackingCategory = Literal["clothing", "toiletries", "electronics", "documents", "medicine", "other"]

PACKING_CATEGORIES: tuple[str, ...] = (
    "clothing",
    "toiletries",
    "electronics",
    "documents",
    "medicine",
    "other",
)


class PackingSuggestionRequest(BaseModel):
    """Payload for POST /api/v1/packing/suggestions."""
    destination: str = Field(..., min_length=1, max_length=200)
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def _dates_in_order(self) -> "PackingSuggestionRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class PackingItem(BaseModel):
    category: PackingCategory = "other"
    name: str
    quantity: int = Field(default=1, ge=1)
    packed: bool = False


class PackingSuggestionResponse(BaseModel):
    destination: str
    items: list[PackingItem] = Field(default_factory=list)
