"""
Eligibility Policy: pure mapping from reputation to decisions.

Behavioral Contract:
- No I/O. Same inputs always give the same outputs.
- is_eligible is monotonic non-decreasing in score.
- claim_amount truncates fractional XP; negative or non-finite XP is worth 0.
- score_level partitions all integers into five closed-open buckets.
"""

import math
from enum import Enum
from typing import Optional

MIN_SCORE = 1400
CLAIM_UNIT = 1_000_000        # 1 XP = 1 token = 10**6 minor units


class ScoreLevel(str, Enum):
    UNTRUSTED = "untrusted"
    QUESTIONABLE = "questionable"
    NEUTRAL = "neutral"
    REPUTABLE = "reputable"
    EXEMPLARY = "exemplary"


# Lower bound (inclusive) of each level, ascending.
_LEVEL_BOUNDS = (
    (2000, ScoreLevel.EXEMPLARY),
    (1600, ScoreLevel.REPUTABLE),
    (1200, ScoreLevel.NEUTRAL),
    (800, ScoreLevel.QUESTIONABLE),
)


def is_eligible(score: Optional[int], min_score: int = MIN_SCORE) -> bool:
    """True if the score meets the whitelist threshold. Unknown is never eligible."""
    if score is None:
        return False
    return score >= min_score


def valid_xp(xp: Optional[float]) -> float:
    """Return xp if it is a finite non-negative number, else 0."""
    if xp is None:
        return 0.0
    try:
        value = float(xp)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


def claim_amount(xp: Optional[float], unit: int = CLAIM_UNIT) -> int:
    """Claimable minor units for an XP total: floor(xp) * unit."""
    return int(math.floor(valid_xp(xp))) * unit


def score_level(score: int) -> ScoreLevel:
    """Display bucket for a score."""
    for lower_bound, level in _LEVEL_BOUNDS:
        if score >= lower_bound:
            return level
    return ScoreLevel.UNTRUSTED


def score_class(score: int) -> str:
    """CSS class used by the dashboard for a score badge."""
    if score >= 1600:
        return "ethos-score-high"
    if score >= 1200:
        return "ethos-score-medium"
    return "ethos-score-low"
