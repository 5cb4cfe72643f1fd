"""Data models for candidate scoring.

CRITICAL: All scores use Decimal. Never use float for signal scores.
"""

from dataclasses import dataclass
from decimal import Decimal

from btcdom.models import RankingItem

ZERO = Decimal("0")


@dataclass(frozen=True)
class BatchStats:
    """Per-period statistics shared by every candidate's component scores.

    Volatility statistics only cover finite volatilities; they are all zero
    when no item has one.
    """

    total_candidates: int
    volatility_min: Decimal
    volatility_max: Decimal
    volatility_mean: Decimal
    price_change_min: Decimal
    price_change_max: Decimal
    max_abs_decline: Decimal
    has_decline: bool


@dataclass(frozen=True)
class Candidate:
    """A ranking item with its component scores and selection outcome.

    Ineligible candidates carry zero scores; they are never scored.
    """

    item: RankingItem
    price_change_score: Decimal
    volume_score: Decimal
    volatility_score: Decimal
    funding_rate_score: Decimal
    total_score: Decimal
    eligible: bool
    reason: str

    @property
    def symbol(self) -> str:
        return self.item.symbol

    def to_dict(self) -> dict:
        return {
            "symbol": self.item.symbol,
            "rank": self.item.rank,
            "price_change_24h": str(self.item.price_change_24h)
            if self.item.price_change_24h is not None
            else None,
            "market_share": str(self.item.market_share)
            if self.item.market_share is not None
            else None,
            "price_change_score": str(self.price_change_score),
            "volume_score": str(self.volume_score),
            "volatility_score": str(self.volatility_score),
            "funding_rate_score": str(self.funding_rate_score),
            "total_score": str(self.total_score),
            "eligible": self.eligible,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class SelectionResult:
    """Outcome of one period's candidate selection.

    Attributes:
        selected: Top-scored eligible candidates, best first.
        rejected: Ineligible candidates followed by eligible ones ranked below the cut.
        total_candidates: Number of non-benchmark items considered.
        reason: Human-readable summary of the selection.
    """

    selected: tuple[Candidate, ...]
    rejected: tuple[Candidate, ...]
    total_candidates: int
    reason: str

    @property
    def candidates(self) -> tuple[Candidate, ...]:
        """Selected followed by rejected, for audit output."""
        return self.selected + self.rejected
