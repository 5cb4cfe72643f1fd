"""Market data sources and result sinks.

The engine depends only on the MarketSnapshotSource and ResultSink ABCs.
Retrying failed fetches is the concrete source's concern; the engine never
retries.

File formats (JSON):
- Market data: {"granularity_hours": 8, "data": [<point>, ...]} or a bare
  list of points. Points accept snake_case or camelCase keys.
- Indicator series: [{"timestamp": ..., "value": ...}, ...]
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from btcdom.backtest.models import BacktestResult
from btcdom.exceptions import MarketDataError
from btcdom.logging import get_logger
from btcdom.models import IndicatorPoint, MarketDataPoint, to_decimal

logger = get_logger(__name__)


class MarketSnapshotSource(ABC):
    """Yields the ordered market data points for a time range."""

    @abstractmethod
    async def fetch(self, start: datetime, end: datetime) -> list[MarketDataPoint]:
        """Return points with start <= timestamp <= end, ascending by timestamp.

        Raises:
            MarketDataError: If the upstream data cannot be read or parsed.
        """
        ...


class ResultSink(ABC):
    """Receives a finished backtest result for storage or rendering."""

    @abstractmethod
    async def publish(self, result: BacktestResult) -> None:
        ...


class InMemorySnapshotSource(MarketSnapshotSource):
    """Serves points already held in memory, filtered to the requested range."""

    def __init__(self, points: list[MarketDataPoint]) -> None:
        self._points = list(points)

    async def fetch(self, start: datetime, end: datetime) -> list[MarketDataPoint]:
        return [p for p in self._points if start <= p.timestamp <= end]


class JsonFileSnapshotSource(MarketSnapshotSource):
    """Reads market data points from a JSON file.

    Args:
        path: Path to the market data file.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    async def fetch(self, start: datetime, end: datetime) -> list[MarketDataPoint]:
        points = load_market_data(self._path)
        selected = [p for p in points if start <= p.timestamp <= end]
        logger.info(
            "market_data_loaded",
            path=str(self._path),
            total_points=len(points),
            in_range=len(selected),
        )
        return selected


class JsonFileResultSink(ResultSink):
    """Writes the result as JSON, Decimals serialized as strings.

    Args:
        path: Output file path; parent directories are created.
        include_snapshots: Set False to write only summary data.
    """

    def __init__(self, path: str | Path, include_snapshots: bool = True) -> None:
        self._path = Path(path)
        self._include_snapshots = include_snapshots

    async def publish(self, result: BacktestResult) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = result.to_dict(include_snapshots=self._include_snapshots)
        self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        logger.info(
            "backtest_result_written",
            path=str(self._path),
            snapshots=len(result.snapshots),
        )


def load_market_data(path: Path) -> list[MarketDataPoint]:
    """Parse a market data file.

    Raises:
        MarketDataError: If the file is missing, not JSON, or a point is malformed.
    """
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise MarketDataError(f"Cannot read market data from {path}: {e}") from e

    granularity: Decimal | None = None
    if isinstance(raw, dict):
        granularity = to_decimal(raw.get("granularity_hours", raw.get("granularityHours")))
        raw = raw.get("data", [])
    if not isinstance(raw, list):
        raise MarketDataError(f"Market data in {path} must be a list of points")

    try:
        return [MarketDataPoint.from_dict(item, granularity) for item in raw]
    except (KeyError, TypeError, ValueError) as e:
        raise MarketDataError(f"Malformed market data point in {path}: {e}") from e


def load_indicator_series(path: str | Path) -> tuple[IndicatorPoint, ...]:
    """Parse a macro-gate indicator file into points sorted by timestamp.

    Raises:
        MarketDataError: If the file cannot be read or a point is malformed.
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        points = [IndicatorPoint.from_dict(item) for item in raw]
    except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise MarketDataError(f"Cannot read indicator series from {path}: {e}") from e
    return tuple(sorted(points, key=lambda p: p.timestamp))
