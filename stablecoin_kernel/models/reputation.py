"""Reputation data returned by the score provider."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from stablecoin_kernel.models.address import Address


class ScoreData(BaseModel):
    """Score lookup result for one address."""

    score: int
    reviews: Optional[int] = None
    vouches: Optional[int] = None


class UserData(BaseModel):
    """Full profile data, including contributor XP."""

    score: int = 0
    xp: float = 0.0                         # Contributor XP (xpTotal)
    reviews: int = 0
    vouches: int = 0                        # Vouches given
    vouches_received: int = 0


class ReputationSnapshot(BaseModel):
    """
    Point-in-time reputation for an address. Never persisted; only used to
    derive the intended eligibility at sync time.
    """

    address: Address
    score: int
    xp: float = 0.0
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
