"""
Trust score helpers.

Every 100 clicks a seller has earned is worth one percentage point of
trust, capped at 100%. The score is display-only and recomputed whenever
a profile is rendered.
"""
from dataclasses import dataclass

CLICKS_PER_POINT = 100
MAX_SCORE = 100


def trust_score(total_clicks):
    """Return the trust percentage for a cumulative click count."""
    total_clicks = max(int(total_clicks or 0), 0)
    return min(total_clicks // CLICKS_PER_POINT, MAX_SCORE)


def trust_label(score):
    if score >= 75:
        return "Highly Trusted"
    if score >= 40:
        return "Growing"
    return "Building"


def clicks_to_next_level(total_clicks):
    """Clicks still needed to gain the next percentage point (0 once maxed)."""
    total_clicks = max(int(total_clicks or 0), 0)
    score = trust_score(total_clicks)
    if score >= MAX_SCORE:
        return 0
    return (score + 1) * CLICKS_PER_POINT - total_clicks


@dataclass(frozen=True)
class TrustSummary:
    total_clicks: int
    score: int
    label: str
    clicks_to_next: int

    @classmethod
    def from_clicks(cls, total_clicks):
        total_clicks = max(int(total_clicks or 0), 0)
        score = trust_score(total_clicks)
        return cls(
            total_clicks=total_clicks,
            score=score,
            label=trust_label(score),
            clicks_to_next=clicks_to_next_level(total_clicks),
        )

    @property
    def is_maxed(self):
        return self.score >= MAX_SCORE
