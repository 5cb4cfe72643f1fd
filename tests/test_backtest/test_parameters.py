"""Tests for StrategyParameters validation and construction from settings."""

from datetime import timedelta
from decimal import Decimal

from btcdom.backtest.models import MacroGateConfig, StrategyParameters
from btcdom.config import AppSettings, MacroGateSettings, StrategySettings
from btcdom.models import AllocationPolicy, IndicatorPoint


class TestValidate:
    """Every failed rule is reported."""

    def test_valid(self, params: StrategyParameters) -> None:
        assert params.validate() == []

    def test_missing_dates(self) -> None:
        assert "start and end dates are required" in StrategyParameters().validate()

    def test_weights_must_sum_to_one(self, params: StrategyParameters) -> None:
        errors = params.with_overrides(weight_volume=Decimal("0.5")).validate()
        assert errors == ["weights must sum to 1 (got 1.15)"]

    def test_weight_sum_tolerance(self, params: StrategyParameters) -> None:
        assert params.with_overrides(weight_volume=Decimal("0.3505")).validate() == []

    def test_negative_weight(self, params: StrategyParameters) -> None:
        errors = params.with_overrides(
            weight_price_change=Decimal("-0.1"), weight_volume=Decimal("0.6")
        ).validate()
        assert "weights must not be negative" in errors

    def test_collects_all_errors(self, params: StrategyParameters) -> None:
        errors = params.with_overrides(
            long_enabled=False,
            short_enabled=False,
            long_ratio=Decimal("1.2"),
            max_short_positions=0,
            max_single_position_ratio=Decimal("0"),
            spot_fee_rate=Decimal("-0.001"),
            min_trade_quantity=Decimal("-1"),
        ).validate()
        assert errors == [
            "at least one of the long or short side must be enabled",
            "long ratio must be between 0 and 1",
            "max short positions must be at least 1",
            "max single position ratio must be in (0, 1]",
            "fee rates must not be negative",
            "min trade quantity must not be negative",
        ]

    def test_gate_checked_only_when_enabled(self, params: StrategyParameters) -> None:
        disabled = params.with_overrides(macro_gate=MacroGateConfig(timeframe="4H"))
        assert disabled.validate() == []
        enabled = params.with_overrides(
            macro_gate=MacroGateConfig(enabled=True, timeframe="4H", threshold=Decimal("NaN"))
        )
        assert enabled.validate() == [
            "macro gate threshold must be a finite number",
            "macro gate timeframe must be one of 8H, 1D, 1W",
        ]


class TestFromSettings:
    """Settings map onto parameters."""

    def test_maps_fields(self, params: StrategyParameters) -> None:
        settings = AppSettings(
            strategy=StrategySettings(
                initial_capital=Decimal("25000"),
                long_ratio=Decimal("0.4"),
                allocation_policy=AllocationPolicy.BY_COMPOSITE_SCORE,
                max_short_positions=3,
            ),
            macro_gate=MacroGateSettings(enabled=True, threshold=Decimal("55"), timeframe="1W"),
        )
        series = (IndicatorPoint(params.start, Decimal("50")),)
        built = StrategyParameters.from_settings(
            settings, start=params.start, end=params.end, indicator_series=series
        )
        assert built.initial_capital == Decimal("25000")
        assert built.long_ratio == Decimal("0.4")
        assert built.allocation_policy == AllocationPolicy.BY_COMPOSITE_SCORE
        assert built.max_short_positions == 3
        assert built.spot_fee_rate == settings.fees.spot_fee_rate
        assert built.macro_gate.enabled is True
        assert built.macro_gate.timeframe == "1W"
        assert built.macro_gate.series == series
        assert built.validate() == []

    def test_with_overrides_is_a_copy(self, params: StrategyParameters) -> None:
        shifted = params.with_overrides(end=params.end + timedelta(days=1))
        assert shifted.end != params.end
        assert shifted.start == params.start

    def test_to_dict(self, params: StrategyParameters) -> None:
        data = params.to_dict()
        assert data["initial_capital"] == "10000"
        assert data["allocation_policy"] == "BY_VOLUME"
        assert data["macro_gate"]["series_points"] == 0
        assert data["start"] == params.start.isoformat()
