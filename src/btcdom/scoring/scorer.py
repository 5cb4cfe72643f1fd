"""Short-candidate scoring and selection.

CandidateScorer ranks the period's alt assets for the short basket:

1. Batch statistics over all non-benchmark items (one pass).
2. Eligibility: 24h change strictly below the benchmark's 24h change.
3. Component scores for eligible items (see btcdom.scoring.components).
4. Stable descending sort by composite score; the top max_short_positions win.

Sub-scores are memoized on rounded inputs and whole selections on the period's
ranked content. Scores are always computed from the rounded inputs, so
enabling or disabling the caches never changes a result.

CRITICAL: All computations use Decimal. Never use float for signal scores.
"""

import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from decimal import Decimal
from itertools import repeat

from btcdom.backtest.models import StrategyParameters
from btcdom.config import CacheSettings
from btcdom.logging import get_logger
from btcdom.models import RankingItem, finite_or
from btcdom.scoring.cache import ScoreCache
from btcdom.scoring.components import (
    compute_composite_score,
    funding_rate_score,
    price_change_score,
    volatility_score,
    volatility_spread,
    volume_rank_score,
)
from btcdom.scoring.models import BatchStats, Candidate, SelectionResult

logger = get_logger(__name__)

ZERO = Decimal("0")
FUNDING_KEY_QUANTUM = Decimal("0.000001")
VOLATILITY_KEY_QUANTUM = Decimal("0.0001")
FINGERPRINT_SIZE = 10

NO_CANDIDATES_REASON = "no candidates available"
NO_ELIGIBLE_REASON = "no candidate meets the price condition"


def compute_batch_stats(items: Sequence[RankingItem]) -> BatchStats:
    """Compute the period statistics the component scores are normalized against.

    Missing price changes count as 0. Volatility statistics skip
    non-finite values.
    """
    vol_min = vol_max = None
    vol_sum = ZERO
    vol_count = 0
    change_min = change_max = None
    max_abs_decline = ZERO
    has_decline = False

    for item in items:
        change = finite_or(item.price_change_24h, ZERO)
        change_min = change if change_min is None else min(change_min, change)
        change_max = change if change_max is None else max(change_max, change)
        if change < ZERO:
            has_decline = True
            max_abs_decline = max(max_abs_decline, -change)

        volatility = item.volatility_24h
        if volatility is not None and volatility.is_finite():
            vol_min = volatility if vol_min is None else min(vol_min, volatility)
            vol_max = volatility if vol_max is None else max(vol_max, volatility)
            vol_sum += volatility
            vol_count += 1

    return BatchStats(
        total_candidates=len(items),
        volatility_min=vol_min if vol_min is not None else ZERO,
        volatility_max=vol_max if vol_max is not None else ZERO,
        volatility_mean=vol_sum / vol_count if vol_count else ZERO,
        price_change_min=change_min if change_min is not None else ZERO,
        price_change_max=change_max if change_max is not None else ZERO,
        max_abs_decline=max_abs_decline,
        has_decline=has_decline,
    )


class CandidateScorer:
    """Scores ranking items and picks the short basket for one period.

    Args:
        params: Strategy parameters (weights, basket size, benchmark symbol).
        cache_settings: Memoization bounds. Defaults to CacheSettings().
        workers: Thread count for scoring; 1 scores sequentially.
        use_cache: Disable to score every item from scratch.
        clock: Time source for cache eviction.
    """

    def __init__(
        self,
        params: StrategyParameters,
        cache_settings: CacheSettings | None = None,
        workers: int = 1,
        use_cache: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if cache_settings is None:
            cache_settings = CacheSettings()
        self._params = params
        self._weights = self._build_weights()
        self._workers = max(1, workers)
        self._use_cache = use_cache
        self._funding_cache: ScoreCache[Decimal] = ScoreCache(
            name="funding_rate",
            max_entries=cache_settings.max_entries,
            cleanup_interval_seconds=cache_settings.cleanup_interval_seconds,
            clock=clock,
        )
        self._volatility_cache: ScoreCache[Decimal] = ScoreCache(
            name="volatility",
            max_entries=cache_settings.max_entries,
            cleanup_interval_seconds=cache_settings.cleanup_interval_seconds,
            clock=clock,
        )
        self._selection_cache: ScoreCache[SelectionResult] = ScoreCache(
            name="selection",
            max_entries=cache_settings.selection_max_entries,
            cleanup_interval_seconds=cache_settings.cleanup_interval_seconds,
            clock=clock,
        )

    def _build_weights(self) -> dict[str, Decimal]:
        """Build the weights dict from strategy parameters."""
        return {
            "price_change": self._params.weight_price_change,
            "volume": self._params.weight_volume,
            "volatility": self._params.weight_volatility,
            "funding_rate": self._params.weight_funding_rate,
        }

    @property
    def caches(self) -> dict[str, ScoreCache]:
        return {
            "funding_rate": self._funding_cache,
            "volatility": self._volatility_cache,
            "selection": self._selection_cache,
        }

    def select(
        self, rankings: Sequence[RankingItem], benchmark_change: Decimal
    ) -> SelectionResult:
        """Score the period's ranking and pick the short basket.

        Args:
            rankings: The period's ranking list. Benchmark entries are dropped.
            benchmark_change: Benchmark 24h change in percent.

        Returns:
            SelectionResult with selected and rejected candidates.
        """
        items = tuple(
            item for item in rankings if item.symbol != self._params.benchmark_symbol
        )
        if not items:
            return SelectionResult(
                selected=(), rejected=(), total_candidates=0, reason=NO_CANDIDATES_REASON
            )

        if not self._use_cache:
            return self._select_uncached(items, benchmark_change)

        key = (
            benchmark_change,
            self._params.scoring_signature(),
            tuple(item.symbol for item in items[:FINGERPRINT_SIZE]),
            items,
        )
        return self._selection_cache.get_or_compute(
            key, lambda: self._select_uncached(items, benchmark_change)
        )

    def _select_uncached(
        self, items: tuple[RankingItem, ...], benchmark_change: Decimal
    ) -> SelectionResult:
        stats = compute_batch_stats(items)

        eligible_items: list[RankingItem] = []
        ineligible: list[Candidate] = []
        for item in items:
            change = finite_or(item.price_change_24h, ZERO)
            if change < benchmark_change:
                eligible_items.append(item)
            else:
                ineligible.append(
                    _unscored(
                        item,
                        f"24h change {change:.2f}% not below benchmark {benchmark_change:.2f}%",
                    )
                )

        if not eligible_items:
            return SelectionResult(
                selected=(),
                rejected=tuple(ineligible),
                total_candidates=len(items),
                reason=NO_ELIGIBLE_REASON,
            )

        scored = self._score_all(eligible_items, stats)
        # sorted() is stable, so ties keep ranking order
        ranked = sorted(scored, key=lambda c: c.total_score, reverse=True)
        limit = self._params.max_short_positions
        selected = tuple(ranked[:limit])
        below_cut = tuple(
            replace(c, reason=f"ranked below top {limit} (score {c.total_score:.3f})")
            for c in ranked[limit:]
        )

        if self._params.verbose:
            logger.debug(
                "short_candidates_selected",
                total=len(items),
                eligible=len(eligible_items),
                selected=[c.symbol for c in selected],
                top_score=str(selected[0].total_score),
            )

        return SelectionResult(
            selected=selected,
            rejected=tuple(ineligible) + below_cut,
            total_candidates=len(items),
            reason=f"selected {len(selected)} short candidates",
        )

    def _score_all(
        self, items: list[RankingItem], stats: BatchStats
    ) -> list[Candidate]:
        """Score eligible items, chunked across threads when workers > 1.

        Chunks are merged in input order so the result matches sequential scoring.
        """
        if self._workers == 1 or len(items) < 2:
            return self._score_chunk(items, stats)

        chunk_size = max(1, -(-len(items) // self._workers))
        chunks = [items[i : i + chunk_size] for i in range(0, len(items), chunk_size)]
        with ThreadPoolExecutor(max_workers=self._workers) as pool:
            results = list(pool.map(self._score_chunk, chunks, repeat(stats)))
        return [candidate for chunk in results for candidate in chunk]

    def _score_chunk(
        self, items: Sequence[RankingItem], stats: BatchStats
    ) -> list[Candidate]:
        return [self._score_item(item, stats) for item in items]

    def _score_item(self, item: RankingItem, stats: BatchStats) -> Candidate:
        change = finite_or(item.price_change_24h, ZERO)
        price_score = price_change_score(
            change,
            stats.price_change_min,
            stats.price_change_max,
            stats.max_abs_decline,
            stats.has_decline,
        )
        volume_score = volume_rank_score(item.rank, stats.total_candidates)
        volatility = finite_or(item.volatility_24h, stats.volatility_mean)
        vol_score = self._volatility_score(
            volatility,
            stats.volatility_mean,
            volatility_spread(stats.volatility_min, stats.volatility_max),
        )
        latest = item.latest_funding
        funding_score = self._funding_score(latest.funding_rate if latest else None)

        total = compute_composite_score(
            price_score, volume_score, vol_score, funding_score, self._weights
        )
        if not total.is_finite():
            logger.warning(
                "non_finite_composite_score",
                symbol=item.symbol,
                price_change_score=str(price_score),
                volume_score=str(volume_score),
                volatility_score=str(vol_score),
                funding_rate_score=str(funding_score),
            )
            total = ZERO

        return Candidate(
            item=item,
            price_change_score=price_score,
            volume_score=volume_score,
            volatility_score=vol_score,
            funding_rate_score=funding_score,
            total_score=total,
            eligible=True,
            reason=f"composite score {total:.3f}",
        )

    def _funding_score(self, rate: Decimal | None) -> Decimal:
        if rate is None or not rate.is_finite():
            return funding_rate_score(None)
        key = rate.quantize(FUNDING_KEY_QUANTUM)
        if not self._use_cache:
            return funding_rate_score(key)
        return self._funding_cache.get_or_compute(key, lambda: funding_rate_score(key))

    def _volatility_score(
        self, volatility: Decimal, mean: Decimal, spread: Decimal
    ) -> Decimal:
        key = (
            volatility.quantize(VOLATILITY_KEY_QUANTUM),
            mean.quantize(VOLATILITY_KEY_QUANTUM),
            spread.quantize(VOLATILITY_KEY_QUANTUM),
        )
        if not self._use_cache:
            return volatility_score(*key)
        return self._volatility_cache.get_or_compute(key, lambda: volatility_score(*key))


def _unscored(item: RankingItem, reason: str) -> Candidate:
    return Candidate(
        item=item,
        price_change_score=ZERO,
        volume_score=ZERO,
        volatility_score=ZERO,
        funding_rate_score=ZERO,
        total_score=ZERO,
        eligible=False,
        reason=reason,
    )
