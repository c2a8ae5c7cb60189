from __future__ import annotations

from pydantic import BaseModel, Field


class PaginationParams(BaseModel):
    """Offset pagination for the booking listings."""

    limit: int = Field(default=25, ge=1, le=200)
    offset: int = Field(default=0, ge=0)


class PaginationMeta(BaseModel):
    limit: int
    offset: int
    count: int
    total: int
    has_more: bool
    next_offset: int | None = None
