"""Short-pool allocation across selected candidates.

All calculations use Decimal arithmetic exclusively -- no float conversions.

Policies:
- BY_VOLUME: proportional to market share; zero total share splits equally.
- BY_COMPOSITE_SCORE: proportional to composite score, each allocation capped
  at pool * max_single_position_ratio, then the capped remainder is spread
  once over the candidates still under the cap, weighted by their headroom.
- EQUAL_ALLOCATION: pool split evenly.

Every allocation is clamped to >= 0. An empty candidate list yields an empty
list, and a non-positive pool yields zeros.
"""

from collections.abc import Sequence
from decimal import Decimal

from btcdom.logging import get_logger
from btcdom.models import AllocationPolicy, finite_or
from btcdom.scoring.models import Candidate

logger = get_logger(__name__)

ZERO = Decimal("0")


class PositionAllocator:
    """Splits a capital pool across selected short candidates.

    Args:
        policy: Allocation policy.
        max_single_position_ratio: Per-candidate cap for BY_COMPOSITE_SCORE.
    """

    def __init__(
        self,
        policy: AllocationPolicy = AllocationPolicy.BY_VOLUME,
        max_single_position_ratio: Decimal = Decimal("0.25"),
    ) -> None:
        self._policy = policy
        self._max_ratio = max_single_position_ratio

    def allocate(self, candidates: Sequence[Candidate], pool: Decimal) -> list[Decimal]:
        """Compute the notional allocation for each candidate.

        Args:
            candidates: Selected candidates, in selection order.
            pool: Capital available to the short side.

        Returns:
            Allocations aligned with candidates.
        """
        if not candidates:
            return []
        pool = finite_or(pool, ZERO)
        if pool <= ZERO:
            return [ZERO for _ in candidates]

        if self._policy == AllocationPolicy.BY_COMPOSITE_SCORE:
            allocations = self._by_composite_score(candidates, pool)
        elif self._policy == AllocationPolicy.EQUAL_ALLOCATION:
            allocations = _equal(len(candidates), pool)
        else:
            allocations = self._by_volume(candidates, pool)

        return [max(ZERO, a) for a in allocations]

    def _by_volume(self, candidates: Sequence[Candidate], pool: Decimal) -> list[Decimal]:
        shares = [max(ZERO, finite_or(c.item.market_share, ZERO)) for c in candidates]
        total_share = sum(shares, ZERO)
        if total_share <= ZERO:
            return _equal(len(candidates), pool)
        return [pool * share / total_share for share in shares]

    def _by_composite_score(
        self, candidates: Sequence[Candidate], pool: Decimal
    ) -> list[Decimal]:
        cap = pool * self._max_ratio
        scores = [max(ZERO, finite_or(c.total_score, ZERO)) for c in candidates]
        total_score = sum(scores, ZERO)

        if total_score > ZERO:
            allocations = [min(pool * score / total_score, cap) for score in scores]
        else:
            allocations = _equal(len(candidates), pool)

        remaining = pool - sum(allocations, ZERO)
        if remaining <= ZERO:
            return allocations

        headroom = [max(ZERO, cap - a) for a in allocations]
        total_headroom = sum(headroom, ZERO)
        if total_headroom <= ZERO:
            logger.debug(
                "allocation_cap_leaves_cash",
                unallocated=str(remaining),
                candidates=len(candidates),
                cap=str(cap),
            )
            return allocations

        # Single pass: a candidate may end above the cap after this step.
        return [
            a + remaining * room / total_headroom if room > ZERO else a
            for a, room in zip(allocations, headroom)
        ]


def _equal(count: int, pool: Decimal) -> list[Decimal]:
    share = pool / Decimal(max(count, 1))
    return [share for _ in range(count)]
