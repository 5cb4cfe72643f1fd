"""Tests for MacroGate reference windows and threshold evaluation."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from btcdom.backtest.models import MacroGateConfig
from btcdom.models import IndicatorPoint
from btcdom.portfolio.macro_gate import MacroGate
from btcdom.portfolio.stepper import PortfolioStepper

# Friday 2024-03-01 00:00 UTC
T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)
DAY = timedelta(days=1)


def _gate(series: list[tuple[datetime, str]], timeframe: str = "1D", enabled: bool = True) -> MacroGate:
    return MacroGate(
        MacroGateConfig(
            enabled=enabled,
            symbol="OTHERS",
            threshold=Decimal("60"),
            timeframe=timeframe,
            series=tuple(IndicatorPoint(ts, Decimal(v)) for ts, v in series),
        )
    )


class TestReferenceTime:
    """Window starts for each timeframe."""

    def test_daily_is_utc_midnight(self) -> None:
        gate = _gate([])
        assert gate.reference_time(T0 + timedelta(hours=16)) == T0

    def test_eight_hour_bucket(self) -> None:
        gate = _gate([], timeframe="8H")
        # 2024-03-01 00:00 UTC is a multiple of 8h since the epoch.
        assert gate.reference_time(T0 + timedelta(hours=5)) == T0
        assert gate.reference_time(T0 + timedelta(hours=9)) == T0 + timedelta(hours=8)

    def test_weekly_bucket_is_epoch_aligned(self) -> None:
        gate = _gate([], timeframe="1W")
        # Epoch weeks start on Thursday: Friday 2024-03-01 falls in the week of 2024-02-29.
        assert gate.reference_time(T0 + timedelta(hours=12)) == T0 - DAY

    def test_non_utc_input_normalized(self) -> None:
        gate = _gate([])
        local = (T0 + timedelta(hours=3)).astimezone(timezone(timedelta(hours=9)))
        assert gate.reference_time(local) == T0


class TestEvaluate:
    """Gate reads the latest value before the window start."""

    def test_disabled_returns_none(self) -> None:
        gate = _gate([(T0 - DAY, "90")], enabled=False)
        assert gate.evaluate(T0) is None

    def test_triggers_above_threshold(self) -> None:
        """Previous day's 70 > 60: the short side is forced out."""
        gate = _gate([(T0 - 2 * DAY, "40"), (T0 - DAY, "70")])
        reading = gate.evaluate(T0 + timedelta(hours=8))
        assert reading is not None
        assert reading.triggered is True
        assert reading.value == Decimal("70")
        assert reading.reference_time == T0

    def test_current_day_value_ignored(self) -> None:
        gate = _gate([(T0 - DAY, "50"), (T0, "90")])
        reading = gate.evaluate(T0 + timedelta(hours=16))
        assert reading.value == Decimal("50")
        assert reading.triggered is False

    def test_equal_to_threshold_does_not_trigger(self) -> None:
        gate = _gate([(T0 - DAY, "60")])
        assert gate.evaluate(T0).triggered is False

    def test_no_preceding_value(self) -> None:
        gate = _gate([(T0 + DAY, "99")])
        reading = gate.evaluate(T0)
        assert reading.value is None
        assert reading.triggered is False

    def test_unsorted_series(self) -> None:
        gate = _gate([(T0 - DAY, "70"), (T0 - 3 * DAY, "10")])
        assert gate.evaluate(T0).value == Decimal("70")

    def test_eight_hour_uses_previous_bucket(self) -> None:
        gate = _gate(
            [(T0 - timedelta(hours=8), "65"), (T0, "30")],
            timeframe="8H",
        )
        assert gate.evaluate(T0 + timedelta(hours=4)).value == Decimal("65")
        assert gate.evaluate(T0 + timedelta(hours=8)).value == Decimal("30")


class TestNaiveTimestamps:
    """Timestamps without a timezone are read as UTC."""

    def test_naive_series_compares_with_aware_period(self) -> None:
        gate = _gate([(datetime(2024, 2, 29), "70")])
        reading = gate.evaluate(T0 + timedelta(hours=8))
        assert reading.value == Decimal("70")
        assert reading.triggered is True

    def test_naive_period_timestamp_is_utc(self) -> None:
        gate = _gate([(T0 - DAY, "70")])
        assert gate.reference_time(datetime(2024, 3, 1, 23)) == T0
        assert gate.evaluate(datetime(2024, 3, 1, 23)).triggered is True

    def test_mixed_series_sorted_by_instant(self) -> None:
        gate = _gate([(T0 - DAY, "70"), (datetime(2024, 2, 27), "10")])
        assert gate.evaluate(T0).value == Decimal("70")

    def test_stepper_runs_with_naive_indicator(self, params, make_item, make_point) -> None:
        gated = params.with_overrides(
            macro_gate=MacroGateConfig(
                enabled=True,
                series=(IndicatorPoint(datetime(2024, 2, 29), Decimal("70")),),
            )
        )
        assert gated.validate() == []
        snapshot = PortfolioStepper(gated).step(
            None, make_point([make_item("ETHUSDT", 1)]), None
        )
        assert snapshot.gate.triggered is True
        assert snapshot.short_legs == ()
