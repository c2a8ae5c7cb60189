"""Domain models describing rate limiting policies and state."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RateLimitPolicy(BaseModel):
    """A named cap on the number of actions per identifier per window."""

    name: str = Field(description="Scope under which counters are kept")
    limit: int = Field(description="Maximum accepted requests within the window", ge=1)
    window_seconds: int = Field(description="Length of the counting window", ge=1)


class RateLimitStatus(BaseModel):
    """Represents the outcome of a rate limit check."""

    allowed: bool = Field(
        description="Whether the request is permitted under the configured quota",
    )
    limit: int = Field(
        description="Maximum number of requests allowed within the window",
        ge=0,
    )
    remaining: int = Field(
        description="Number of requests still available before hitting the limit",
        ge=0,
    )
    retry_after_seconds: int = Field(
        description="Number of seconds until the quota resets if the request was blocked",
        ge=0,
    )
