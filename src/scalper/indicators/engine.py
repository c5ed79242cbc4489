"""IndicatorEngine: the strategy's indicator set fed one candle at a time."""

from dataclasses import dataclass

from scalper.config import StrategySettings
from scalper.indicators.momentum import (
    RelativeStrengthIndex,
    StochasticOscillator,
    StochasticResult,
)
from scalper.indicators.moving_average import ExponentialMovingAverage
from scalper.indicators.volatility import AverageTrueRange
from scalper.market_data.models import Candle


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicator values for one candle.

    Only built once every required indicator is stable. The secondary
    oscillator is optional and None until the stochastic has stabilised.
    """

    fast: float
    slow: float
    trend: float
    volatility_range: float
    momentum_oscillator: float
    secondary_oscillator: StochasticResult | None

    def to_dict(self) -> dict[str, float | None]:
        """Flat view for logs and market snapshots."""
        stoch = self.secondary_oscillator
        return {
            "fast": self.fast,
            "slow": self.slow,
            "trend": self.trend,
            "volatility_range": self.volatility_range,
            "momentum_oscillator": self.momentum_oscillator,
            "stochastic_k": stoch.k if stoch else None,
            "stochastic_d": stoch.d if stoch else None,
        }


class IndicatorEngine:
    """Owns the fast/slow/trend EMAs, ATR, RSI and stochastic for one strategy.

    Fast, slow and trend EMAs, ATR and RSI are required for readiness; the
    stochastic oscillator never blocks decisions.
    """

    def __init__(self, settings: StrategySettings) -> None:
        self.fast = ExponentialMovingAverage(settings.fast_period)
        self.slow = ExponentialMovingAverage(settings.slow_period)
        self.trend = ExponentialMovingAverage(settings.trend_period)
        self.volatility = AverageTrueRange(
            settings.volatility_period, settings.volatility_smoothing
        )
        self.momentum = RelativeStrengthIndex(settings.oscillator_period)
        self.stochastic = StochasticOscillator(
            settings.stochastic_period,
            settings.stochastic_signal_period,
            settings.stochastic_signal_period,
        )
        self._updates = 0

    @property
    def updates(self) -> int:
        """Number of candles fed since construction or the last reset."""
        return self._updates

    def update(self, candle: Candle) -> None:
        close = candle.close
        self.fast.update(close)
        self.slow.update(close)
        self.trend.update(close)
        self.volatility.update(candle.high, candle.low, close)
        self.momentum.update(close)
        self.stochastic.update(candle.high, candle.low, close)
        self._updates += 1

    @property
    def is_ready(self) -> bool:
        return (
            self.fast.is_stable
            and self.slow.is_stable
            and self.trend.is_stable
            and self.volatility.is_stable
            and self.momentum.is_stable
        )

    def snapshot(self) -> IndicatorSnapshot | None:
        """Current values, or None while any required indicator is unstable."""
        if not self.is_ready:
            return None
        fast = self.fast.result()
        slow = self.slow.result()
        trend = self.trend.result()
        volatility_range = self.volatility.result()
        momentum = self.momentum.result()
        if fast is None or slow is None or trend is None:
            return None
        if volatility_range is None or momentum is None:
            return None
        return IndicatorSnapshot(
            fast=fast,
            slow=slow,
            trend=trend,
            volatility_range=volatility_range,
            momentum_oscillator=momentum,
            secondary_oscillator=self.stochastic.result(),
        )

    def reset(self) -> None:
        for indicator in (
            self.fast,
            self.slow,
            self.trend,
            self.volatility,
            self.momentum,
            self.stochastic,
        ):
            indicator.reset()
        self._updates = 0
