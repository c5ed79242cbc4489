"""Strategy data models: positions and the ENTRY/EXIT event union.

StrategyEvent is a closed union of two frozen dataclasses tagged by a
``type`` literal, so consumers can ``match`` on it exhaustively:

    match event:
        case EntryEvent():
            ...
        case ExitEvent():
            ...
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal


class PositionSide(str, Enum):
    """Position direction."""

    LONG = "LONG"
    SHORT = "SHORT"


class MarketRegime(str, Enum):
    """Trend strength classification; only weights confidence."""

    TRENDING = "TRENDING"
    RANGING = "RANGING"


class StrategyPhase(str, Enum):
    FLAT = "FLAT"  # no position, no setup
    ARMED = "ARMED"  # pullback detected, waiting for the trigger candle
    IN_POSITION = "IN_POSITION"


class PullbackDepth(str, Enum):
    """DEEP pullbacks hold above the slow EMA; SHALLOW ones touch it."""

    DEEP = "DEEP"
    SHALLOW = "SHALLOW"


class ExitReason(str, Enum):
    STOP_LOSS = "STOP_LOSS"
    TRAILING_STOP = "TRAILING_STOP"
    TAKE_PROFIT = "TAKE_PROFIT"
    MOMENTUM_EXTREME = "MOMENTUM_EXTREME"
    TREND_REVERSAL = "TREND_REVERSAL"
    MAX_DURATION = "MAX_DURATION"


@dataclass
class Position:
    """The single open position, created on ENTRY and dropped on EXIT.

    Only the strategy mutates it (trailing stop and best price).
    """

    side: PositionSide
    entry_price: float
    stop_loss: float
    take_profit: float
    size: float
    entry_index: int
    entry_time: int  # open time of the entry candle (ms)
    volatility_at_entry: float
    risk_reward_ratio: float
    setup: PullbackDepth
    trailing_stop: float | None = None
    best_price: float | None = None

    @property
    def risk_per_unit(self) -> float:
        return abs(self.entry_price - self.stop_loss)

    def effective_stop(self) -> float:
        """The tighter of the static and trailing stop in the position's favour."""
        if self.trailing_stop is None:
            return self.stop_loss
        if self.side is PositionSide.LONG:
            return max(self.stop_loss, self.trailing_stop)
        return min(self.stop_loss, self.trailing_stop)

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class EntryEvent:
    type: Literal["ENTRY"] = field(default="ENTRY", init=False)
    side: PositionSide
    price: float
    stop_loss: float
    take_profit: float
    volatility: float
    size: float
    index: int
    timestamp: int
    reason: str
    confidence: float
    risk_reward_ratio: float
    setup: PullbackDepth

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class ExitEvent:
    type: Literal["EXIT"] = field(default="EXIT", init=False)
    side: PositionSide
    price: float
    pnl: float
    r_multiple: float
    index: int
    timestamp: int
    reason: ExitReason
    trade_duration: int  # bars held

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))


StrategyEvent = EntryEvent | ExitEvent


@dataclass(frozen=True)
class TradeStatistics:
    consecutive_wins: int = 0
    consecutive_losses: int = 0
    total_trades: int = 0
    winning_trades: int = 0
    realized_pnl: float = 0.0


def _plain(payload: dict[str, Any]) -> dict[str, Any]:
    """Replace enum members by their values so the dict is JSON-ready."""
    return {k: v.value if isinstance(v, Enum) else v for k, v in payload.items()}
