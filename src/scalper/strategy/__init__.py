"""Pullback scalping strategy: state machine, sizing and event models."""

from scalper.strategy.models import (
    EntryEvent,
    ExitEvent,
    ExitReason,
    MarketRegime,
    Position,
    PositionSide,
    PullbackDepth,
    StrategyEvent,
    StrategyPhase,
    TradeStatistics,
)
from scalper.strategy.pullback import ScalpingPullbackStrategy
from scalper.strategy.sizing import PositionSizer

__all__ = [
    "EntryEvent",
    "ExitEvent",
    "ExitReason",
    "MarketRegime",
    "Position",
    "PositionSide",
    "PositionSizer",
    "PullbackDepth",
    "ScalpingPullbackStrategy",
    "StrategyEvent",
    "StrategyPhase",
    "TradeStatistics",
]
