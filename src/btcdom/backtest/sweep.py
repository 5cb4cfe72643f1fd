"""Parameter sweep: grid search over strategy parameters.

Market data is fetched once for the base date range and replayed for every
combination produced by itertools.product over the grid. Runs use
optimize-only mode (no chart series), and only the best run keeps its
per-period snapshots; the others keep their performance report and summary.

Combinations that fail StrategyParameters.validate() (weights that no longer
sum to 1, for example) are skipped and reported, not run.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from collections.abc import Callable
from dataclasses import fields, replace
from decimal import Decimal
from enum import Enum
from itertools import product

from btcdom.analytics.performance import PerformanceReport
from btcdom.backtest.engine import BacktestEngine, validate_series
from btcdom.backtest.models import StrategyParameters, SweepEntry, SweepResult
from btcdom.config import AppSettings
from btcdom.data.source import MarketSnapshotSource
from btcdom.exceptions import ParameterValidationError
from btcdom.logging import get_logger, run_context
from btcdom.models import AllocationPolicy

logger = get_logger(__name__)

SWEEP_OBJECTIVES: dict[str, Callable[[PerformanceReport], Decimal]] = {
    "total_return": lambda p: p.total_return,
    "sharpe": lambda p: p.sharpe_ratio,
    "calmar": lambda p: p.calmar_ratio,
    # smaller drawdown ranks higher
    "max_drawdown": lambda p: -p.max_drawdown.drawdown,
    "composite": lambda p: (
        p.sharpe_ratio * Decimal("0.4")
        + p.total_return * Decimal("0.3")
        - p.max_drawdown.drawdown * Decimal("0.3")
    ),
}

# The data is fetched once for the base range, so the range itself is fixed.
UNSWEEPABLE = frozenset({"start", "end"})


def _coerce(base_value: object, value: object) -> object:
    """Convert a grid value to the type of the base parameter field."""
    if isinstance(base_value, Decimal) and not isinstance(value, Decimal):
        return Decimal(str(value))
    if isinstance(base_value, Enum) and not isinstance(value, type(base_value)):
        return type(base_value)(value)
    return value


class ParameterSweep:
    """Grid search over StrategyParameters fields.

    Args:
        source: Market data source, read once per sweep.
        settings: Backtest and cache settings. Defaults to AppSettings().
        objective: Ranking metric, one of SWEEP_OBJECTIVES.

    Raises:
        ValueError: If the objective is unknown.
    """

    def __init__(
        self,
        source: MarketSnapshotSource,
        settings: AppSettings | None = None,
        objective: str = "sharpe",
    ) -> None:
        if objective not in SWEEP_OBJECTIVES:
            raise ValueError(
                f"Unknown objective '{objective}': expected one of {', '.join(SWEEP_OBJECTIVES)}"
            )
        self._source = source
        self._settings = settings or AppSettings()
        self._objective = objective

    async def run(
        self,
        base_params: StrategyParameters,
        param_grid: dict[str, list],
        progress_callback: Callable | None = None,
    ) -> SweepResult:
        """Run a backtest for every valid combination in the grid.

        Args:
            base_params: Parameters each combination overrides; supplies the date range.
            param_grid: Parameter name -> candidate values.
            progress_callback: Optional callback(index, total, overrides, result);
                result is None for skipped combinations.

        Returns:
            SweepResult with entries sorted best first. Ties keep grid order.

        Raises:
            ValueError: If a grid key is not a sweepable StrategyParameters field.
            ParameterValidationError: If the base date range is missing or empty.
            MarketDataError: If the fetched series is empty or malformed.
        """
        field_names = {f.name for f in fields(StrategyParameters)}
        for key in param_grid:
            if key not in field_names:
                raise ValueError(f"Invalid parameter '{key}': not a StrategyParameters field")
            if key in UNSWEEPABLE:
                raise ValueError(f"Invalid parameter '{key}': the date range cannot be swept")

        if base_params.start is None or base_params.end is None:
            raise ParameterValidationError(["start and end dates are required"])
        if base_params.start >= base_params.end:
            raise ParameterValidationError(["start date must be before end date"])

        points = await self._source.fetch(base_params.start, base_params.end)
        validate_series(points)

        keys = list(param_grid)
        combinations = list(product(*param_grid.values()))
        total = len(combinations)
        score_of = SWEEP_OBJECTIVES[self._objective]
        backtest_settings = self._settings.backtest.model_copy(update={"optimize_only": True})

        logger.info(
            "sweep_starting",
            parameters=keys,
            total_combinations=total,
            objective=self._objective,
            periods=len(points),
        )

        entries: list[SweepEntry] = []
        skipped: list[tuple[dict[str, object], tuple[str, ...]]] = []
        best_index = -1

        for idx, combo in enumerate(combinations):
            overrides = {
                key: _coerce(getattr(base_params, key), value)
                for key, value in zip(keys, combo)
            }
            params = base_params.with_overrides(**overrides)

            errors = params.validate()
            if errors:
                logger.debug("sweep_combination_skipped", index=idx + 1, errors=errors)
                skipped.append((overrides, tuple(errors)))
                if progress_callback is not None:
                    progress_callback(idx + 1, total, overrides, None)
                continue

            with run_context(params, sweep_index=idx + 1):
                engine = BacktestEngine(
                    params,
                    self._source,
                    backtest_settings=backtest_settings,
                    cache_settings=self._settings.cache,
                )
                result = engine.simulate(points)
            score = score_of(result.performance)

            if best_index < 0 or score > entries[best_index].score:
                # Only the best run keeps its snapshots
                if best_index >= 0:
                    previous_best = entries[best_index]
                    entries[best_index] = replace(
                        previous_best, result=replace(previous_best.result, snapshots=())
                    )
                best_index = len(entries)
                entries.append(SweepEntry(overrides=overrides, result=result, score=score))
            else:
                entries.append(
                    SweepEntry(
                        overrides=overrides,
                        result=replace(result, snapshots=()),
                        score=score,
                    )
                )

            if progress_callback is not None:
                progress_callback(idx + 1, total, overrides, result)

            logger.debug(
                "sweep_run_complete",
                index=idx + 1,
                total=total,
                overrides={k: str(v) for k, v in overrides.items()},
                score=str(score),
            )

        ranked = tuple(sorted(entries, key=lambda entry: entry.score, reverse=True))

        logger.info(
            "sweep_complete",
            total_combinations=total,
            evaluated=len(ranked),
            skipped=len(skipped),
            best_score=str(ranked[0].score) if ranked else None,
            best_overrides={k: str(v) for k, v in ranked[0].overrides.items()} if ranked else None,
        )

        return SweepResult(
            param_grid=param_grid,
            metric=self._objective,
            entries=ranked,
            skipped=tuple(skipped),
        )

    @staticmethod
    def generate_default_grid() -> dict[str, list]:
        """Default grid over basket size, allocation policy and long ratio.

        Returns:
            Dict mapping parameter names to lists of values.
        """
        return {
            "max_short_positions": [3, 5, 8],
            "allocation_policy": list(AllocationPolicy),
            "long_ratio": [Decimal("0.3"), Decimal("0.5"), Decimal("0.7")],
        }
