"""Tests for entry confidence and adaptive sizing."""

import pytest

from scalper.config import StrategySettings
from scalper.indicators.engine import IndicatorSnapshot
from scalper.indicators.momentum import StochasticResult
from scalper.strategy.models import MarketRegime, PositionSide, PullbackDepth
from scalper.strategy.sizing import PositionSizer


def _snapshot(rsi: float = 50.0, stoch: StochasticResult | None = None) -> IndicatorSnapshot:
    return IndicatorSnapshot(
        fast=101.0,
        slow=100.0,
        trend=99.0,
        volatility_range=1.0,
        momentum_oscillator=rsi,
        secondary_oscillator=stoch,
    )


class TestConfidence:
    def test_all_long_bonuses_capped(self) -> None:
        sizer = PositionSizer(StrategySettings())

        confidence = sizer.confidence(
            PositionSide.LONG,
            _snapshot(stoch=StochasticResult(k=60, d=50)),
            MarketRegime.TRENDING,
            volume_spike=False,
            setup=PullbackDepth.DEEP,
        )

        assert confidence == pytest.approx(0.95)

    def test_shallow_setup_discounted(self) -> None:
        sizer = PositionSizer(StrategySettings())

        confidence = sizer.confidence(
            PositionSide.LONG,
            _snapshot(stoch=StochasticResult(k=60, d=50)),
            MarketRegime.TRENDING,
            volume_spike=False,
            setup=PullbackDepth.SHALLOW,
        )

        assert confidence == pytest.approx(0.95 * 0.8)

    def test_short_in_ranging_market(self) -> None:
        sizer = PositionSizer(StrategySettings())

        confidence = sizer.confidence(
            PositionSide.SHORT,
            _snapshot(stoch=StochasticResult(k=30, d=40)),
            MarketRegime.RANGING,
            volume_spike=False,
            setup=PullbackDepth.DEEP,
        )

        assert confidence == pytest.approx(0.85)

    def test_overbought_long_gets_base_only(self) -> None:
        sizer = PositionSizer(StrategySettings())

        confidence = sizer.confidence(
            PositionSide.LONG, _snapshot(rsi=90.0), MarketRegime.RANGING, False, PullbackDepth.DEEP
        )

        assert confidence == pytest.approx(0.6)

    def test_volume_spike_counts_only_when_volume_weighted(self) -> None:
        plain = PositionSizer(StrategySettings())
        weighted = PositionSizer(StrategySettings(volume_weighted=True))
        args = (PositionSide.LONG, _snapshot(), MarketRegime.RANGING, True, PullbackDepth.DEEP)

        assert plain.confidence(*args) == pytest.approx(0.75)
        assert weighted.confidence(*args) == pytest.approx(0.85)


class TestSize:
    def test_neutral_inputs_give_base_size(self) -> None:
        sizer = PositionSizer(StrategySettings())

        assert sizer.size(2.0, 1.0, 0, 0) == pytest.approx(1.0)
        assert sizer.size(2.0, 0.5, 0, 0) == pytest.approx(0.85)

    def test_volatility_factor_clamped(self) -> None:
        sizer = PositionSizer(StrategySettings(min_volatility=2.0))

        assert sizer.size(1.0, 1.0, 0, 0) == pytest.approx(1.5)
        assert sizer.size(8.0, 1.0, 0, 0) == pytest.approx(0.5)

    def test_streak_factors(self) -> None:
        sizer = PositionSizer(StrategySettings())

        assert sizer.size(1.0, 1.0, 0, 3) == pytest.approx(0.5)
        assert sizer.size(1.0, 1.0, 0, 2) == pytest.approx(1.0)
        assert sizer.size(1.0, 1.0, 3, 0) == pytest.approx(1.2)

    def test_clamped_to_bounds(self) -> None:
        sizer = PositionSizer(
            StrategySettings(max_position_size=1.1, min_position_size=0.6)
        )

        assert sizer.size(1.0, 1.0, 3, 0) == pytest.approx(1.1)
        assert sizer.size(1.0, 0.0, 0, 3) == pytest.approx(0.6)

    def test_fixed_size_without_volatility_adjustment(self) -> None:
        sizer = PositionSizer(StrategySettings(volatility_adjustment=False))

        assert sizer.size(5.0, 0.1, 0, 5) == pytest.approx(1.0)
