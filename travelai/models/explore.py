"""
explore.py — Pydantic schemas for the destination guide endpoint.

ExploreRequest  — what the client sends
DateRange       — travel dates as entered in the search form
RateLimitError  — body of a 429 returned to guests over their quota
"""

from pydantic import BaseModel, ConfigDict, Field


class DateRange(BaseModel):
    """Travel dates. The UI sends free-form strings under "from" / "to"."""
    model_config = ConfigDict(populate_by_name=True)

    start: str = Field(..., alias="from", min_length=1, max_length=64)
    end: str = Field(..., alias="to", min_length=1, max_length=64)


class ExploreRequest(BaseModel):
    """Payload for POST /api/v1/explore."""
    query: str = Field(..., min_length=1, max_length=200, description="Destination")
    experience: str = Field(default="anything", max_length=200)
    date_range: DateRange


class RateLimitError(BaseModel):
    error: str = "Rate limit exceeded"
    limit: int
    remaining: int
    reset: int  # epoch milliseconds
