"""Streaming technical indicators.

Each indicator is an independent accumulator (update / is_stable / result /
reset). IndicatorEngine bundles the set the pullback strategy consumes.
"""

from scalper.indicators.base import StreamingIndicator
from scalper.indicators.engine import IndicatorEngine, IndicatorSnapshot
from scalper.indicators.momentum import (
    RelativeStrengthIndex,
    StochasticOscillator,
    StochasticResult,
)
from scalper.indicators.moving_average import (
    ExponentialMovingAverage,
    SimpleMovingAverage,
)
from scalper.indicators.volatility import AverageTrueRange, true_range

__all__ = [
    "AverageTrueRange",
    "ExponentialMovingAverage",
    "IndicatorEngine",
    "IndicatorSnapshot",
    "RelativeStrengthIndex",
    "SimpleMovingAverage",
    "StochasticOscillator",
    "StochasticResult",
    "StreamingIndicator",
    "true_range",
]
