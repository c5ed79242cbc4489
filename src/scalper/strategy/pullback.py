"""Pullback scalping strategy state machine.

Consumes closed candles strictly in order and emits ENTRY/EXIT events.
Per candle:

1. Update indicators; defer decisions until the required set is stable.
2. Classify the regime (TRENDING when |fast - slow| / ATR exceeds the trend
   strength threshold). The regime only weights confidence.
3. Below the volatility floor, armed setups are cleared and no entry is
   considered. Open positions are still managed.
4. With a position open, evaluate exits in priority order: stop (static or
   trailing), take-profit, early exits (oscillator extreme or fast/slow flip
   against the position), maximum holding duration. At most one exit per
   candle and never a re-entry on the exit bar.
5. Flat, evaluate entries: trend alignment, an armed pullback, the trigger
   close beyond the fast EMA, the oscillator filter, optional momentum
   confirmation and the minimum risk/reward. Deep setups take precedence
   over shallow ones.
6. Recompute the armed setups from the current bar (level-triggered: a
   setup stays armed for as long as closes hold beyond the fast EMA).

Given the same candles and settings the event sequence is identical.
"""

from collections import deque
from collections.abc import Iterable

from scalper.config import StrategySettings
from scalper.exceptions import CandleOrderError, PositionInvariantError
from scalper.indicators.engine import IndicatorEngine, IndicatorSnapshot
from scalper.logging import get_logger
from scalper.market_data.models import Candle
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
from scalper.strategy.sizing import PositionSizer

logger = get_logger(__name__)

#: Bars of volume history used for spike detection.
VOLUME_WINDOW = 20
#: A bar's volume above this multiple of the window average is a spike.
VOLUME_SPIKE_FACTOR = 1.5

_SETUP_LABELS = {
    (PositionSide.LONG, PullbackDepth.DEEP): "Deep pullback in uptrend",
    (PositionSide.LONG, PullbackDepth.SHALLOW): "Shallow pullback in uptrend",
    (PositionSide.SHORT, PullbackDepth.DEEP): "Deep throwback in downtrend",
    (PositionSide.SHORT, PullbackDepth.SHALLOW): "Shallow throwback in downtrend",
}


class ScalpingPullbackStrategy:
    """Deterministic FLAT / ARMED / IN_POSITION state machine.

    Not safe for concurrent use: callers serialise candles (the orchestrator
    feeds it from a single consumer task).

    Args:
        settings: Validated strategy parameters.
    """

    def __init__(self, settings: StrategySettings | None = None) -> None:
        self._settings = settings or StrategySettings()
        self._indicators = IndicatorEngine(self._settings)
        self._sizer = PositionSizer(self._settings)
        self._volumes: deque[float] = deque(maxlen=VOLUME_WINDOW)
        self._init_state()

    def _init_state(self) -> None:
        self._position: Position | None = None
        self._armed: set[tuple[PositionSide, PullbackDepth]] = set()
        self._regime = MarketRegime.TRENDING
        self._volume_spike = False
        self._bar_index = 0
        self._last_open_time: int | None = None
        self._consecutive_wins = 0
        self._consecutive_losses = 0
        self._total_trades = 0
        self._winning_trades = 0
        self._realized_pnl = 0.0

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def settings(self) -> StrategySettings:
        return self._settings

    @property
    def indicators(self) -> IndicatorEngine:
        return self._indicators

    @property
    def phase(self) -> StrategyPhase:
        if self._position is not None:
            return StrategyPhase.IN_POSITION
        if self._armed:
            return StrategyPhase.ARMED
        return StrategyPhase.FLAT

    @property
    def open_position(self) -> Position | None:
        return self._position

    @property
    def market_regime(self) -> MarketRegime:
        return self._regime

    @property
    def armed_setups(self) -> frozenset[tuple[PositionSide, PullbackDepth]]:
        return frozenset(self._armed)

    @property
    def bar_index(self) -> int:
        """Index the next candle will be assigned."""
        return self._bar_index

    @property
    def trade_statistics(self) -> TradeStatistics:
        return TradeStatistics(
            consecutive_wins=self._consecutive_wins,
            consecutive_losses=self._consecutive_losses,
            total_trades=self._total_trades,
            winning_trades=self._winning_trades,
            realized_pnl=self._realized_pnl,
        )

    # ------------------------------------------------------------------
    # Candle processing
    # ------------------------------------------------------------------

    def prime(self, candles: Iterable[Candle]) -> int:
        """Warm up indicators from history without making decisions.

        Returns the number of candles consumed.
        """
        count = 0
        for candle in candles:
            self._advance(candle)
            count += 1
        logger.info(
            "strategy_primed",
            candles=count,
            indicators_ready=self._indicators.is_ready,
        )
        return count

    def on_candle(self, candle: Candle) -> list[StrategyEvent]:
        """Apply one closed candle and return the events it produced.

        Raises:
            CandleOrderError: If the candle does not open after the previous one.
        """
        index = self._advance(candle)
        events: list[StrategyEvent] = []

        snapshot = self._indicators.snapshot()
        if snapshot is None:
            return events

        self._regime = self._classify_regime(snapshot)
        s = self._settings
        below_floor = snapshot.volatility_range < s.min_volatility
        above_ceiling = (
            s.max_volatility is not None and snapshot.volatility_range > s.max_volatility
        )

        if self._position is not None:
            exit_event = self._evaluate_exit(candle, index, snapshot)
            if exit_event is not None:
                events.append(exit_event)
            else:
                self._ratchet_trailing_stop(candle)
        elif not below_floor and not above_ceiling:
            entry_event = self._evaluate_entry(candle, index, snapshot)
            if entry_event is not None:
                events.append(entry_event)

        if below_floor:
            self._armed.clear()
        else:
            self._update_armed(candle, snapshot)
        return events

    def reset(self) -> None:
        """Clear indicators, position, setups, streaks and the bar index."""
        self._indicators.reset()
        self._volumes.clear()
        self._init_state()

    def _advance(self, candle: Candle) -> int:
        if self._last_open_time is not None and candle.open_time <= self._last_open_time:
            raise CandleOrderError(
                f"candle open_time {candle.open_time} is not after "
                f"previous open_time {self._last_open_time}"
            )
        self._last_open_time = candle.open_time
        index = self._bar_index
        self._bar_index += 1

        self._indicators.update(candle)
        self._volumes.append(candle.volume)
        average = sum(self._volumes) / len(self._volumes)
        self._volume_spike = average > 0 and candle.volume > average * VOLUME_SPIKE_FACTOR
        return index

    def _classify_regime(self, snapshot: IndicatorSnapshot) -> MarketRegime:
        if snapshot.volatility_range <= 0:
            return MarketRegime.RANGING
        strength = abs(snapshot.fast - snapshot.slow) / snapshot.volatility_range
        if strength > self._settings.trend_strength_threshold:
            return MarketRegime.TRENDING
        return MarketRegime.RANGING

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def _evaluate_entry(
        self, candle: Candle, index: int, snapshot: IndicatorSnapshot
    ) -> EntryEvent | None:
        s = self._settings
        close = candle.close
        uptrend = snapshot.fast > snapshot.slow and close > snapshot.trend
        downtrend = snapshot.fast < snapshot.slow and close < snapshot.trend
        long_trigger = (
            uptrend
            and close > snapshot.fast
            and snapshot.momentum_oscillator < s.oscillator_overbought
        )
        short_trigger = (
            downtrend
            and close < snapshot.fast
            and snapshot.momentum_oscillator > s.oscillator_oversold
        )

        candidates = [
            (PositionSide.LONG, PullbackDepth.DEEP, long_trigger),
            (PositionSide.LONG, PullbackDepth.SHALLOW, long_trigger and s.allow_shallow_pullbacks),
            (PositionSide.SHORT, PullbackDepth.DEEP, short_trigger),
            (PositionSide.SHORT, PullbackDepth.SHALLOW, short_trigger and s.allow_shallow_pullbacks),
        ]
        for side, depth, triggered in candidates:
            if triggered and (side, depth) in self._armed:
                # The first qualifying setup decides; no fall-through on rejection
                return self._try_enter(candle, index, snapshot, side, depth)
        return None

    def _has_momentum_confirmation(self, side: PositionSide, snapshot: IndicatorSnapshot) -> bool:
        s = self._settings
        if not s.require_momentum_confirmation:
            return True
        stoch = snapshot.secondary_oscillator
        if stoch is not None:
            agrees = stoch.k >= stoch.d if side is PositionSide.LONG else stoch.k <= stoch.d
            if not agrees:
                return False
        return not s.volume_weighted or self._volume_spike

    def _try_enter(
        self,
        candle: Candle,
        index: int,
        snapshot: IndicatorSnapshot,
        side: PositionSide,
        depth: PullbackDepth,
    ) -> EntryEvent | None:
        s = self._settings
        if not self._has_momentum_confirmation(side, snapshot):
            logger.debug("entry_rejected", reason="no_momentum_confirmation", index=index)
            return None

        price = candle.close
        atr = snapshot.volatility_range
        if side is PositionSide.LONG:
            stop_loss = price - atr * s.atr_stop_multiplier
            take_profit = price + atr * s.atr_take_profit_multiplier
            risk = price - stop_loss
            reward = take_profit - price
        else:
            stop_loss = price + atr * s.atr_stop_multiplier
            take_profit = price - atr * s.atr_take_profit_multiplier
            risk = stop_loss - price
            reward = price - take_profit
        risk_reward_ratio = reward / risk if risk > 0 and reward > 0 else 0.0

        if risk_reward_ratio < s.min_risk_reward_ratio:
            logger.debug(
                "entry_rejected",
                reason="risk_reward",
                index=index,
                risk_reward_ratio=risk_reward_ratio,
            )
            return None

        confidence = self._sizer.confidence(
            side, snapshot, self._regime, self._volume_spike, depth
        )
        size = self._sizer.size(
            atr, confidence, self._consecutive_wins, self._consecutive_losses
        )

        if self._position is not None:
            raise PositionInvariantError(
                f"entry at bar {index} while a {self._position.side.value} "
                f"position from bar {self._position.entry_index} is open"
            )
        self._position = Position(
            side=side,
            entry_price=price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            size=size,
            entry_index=index,
            entry_time=candle.open_time,
            volatility_at_entry=atr,
            risk_reward_ratio=risk_reward_ratio,
            setup=depth,
            trailing_stop=stop_loss if s.trailing_stop_enabled else None,
            best_price=price,
        )
        self._armed.discard((side, depth))

        event = EntryEvent(
            side=side,
            price=price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            volatility=atr,
            size=size,
            index=index,
            timestamp=candle.open_time,
            reason=f"{_SETUP_LABELS[(side, depth)]} | RSI: {snapshot.momentum_oscillator:.2f}",
            confidence=confidence,
            risk_reward_ratio=risk_reward_ratio,
            setup=depth,
        )
        logger.info(
            "strategy_entry",
            side=side.value,
            setup=depth.value,
            price=price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            size=size,
            index=index,
        )
        return event

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------

    def _evaluate_exit(
        self, candle: Candle, index: int, snapshot: IndicatorSnapshot
    ) -> ExitEvent | None:
        position = self._position
        if position is None:
            return None
        s = self._settings

        exit_price: float | None = None
        reason: ExitReason | None = None
        stop = position.effective_stop()
        stop_reason = (
            ExitReason.TRAILING_STOP if stop != position.stop_loss else ExitReason.STOP_LOSS
        )

        if position.side is PositionSide.LONG:
            if candle.low <= stop:
                exit_price, reason = stop, stop_reason
            elif candle.high >= position.take_profit:
                exit_price, reason = position.take_profit, ExitReason.TAKE_PROFIT
        else:
            if candle.high >= stop:
                exit_price, reason = stop, stop_reason
            elif candle.low <= position.take_profit:
                exit_price, reason = position.take_profit, ExitReason.TAKE_PROFIT

        if reason is None and s.early_exit_enabled:
            reason = self._early_exit_reason(position.side, snapshot)
        if reason is None and self._duration_exceeded(position, candle, index):
            reason = ExitReason.MAX_DURATION
        if reason is None:
            return None
        if exit_price is None:
            exit_price = candle.close

        return self._close_position(position, candle, index, exit_price, reason)

    def _early_exit_reason(
        self, side: PositionSide, snapshot: IndicatorSnapshot
    ) -> ExitReason | None:
        s = self._settings
        rsi = snapshot.momentum_oscillator
        if side is PositionSide.LONG:
            if rsi > s.early_exit_overbought:
                return ExitReason.MOMENTUM_EXTREME
            if snapshot.fast < snapshot.slow:
                return ExitReason.TREND_REVERSAL
        else:
            if rsi < s.early_exit_oversold:
                return ExitReason.MOMENTUM_EXTREME
            if snapshot.fast > snapshot.slow:
                return ExitReason.TREND_REVERSAL
        return None

    def _duration_exceeded(self, position: Position, candle: Candle, index: int) -> bool:
        s = self._settings
        if (
            s.max_trade_duration_bars is not None
            and index - position.entry_index >= s.max_trade_duration_bars
        ):
            return True
        return (
            s.max_trade_duration_ms is not None
            and candle.open_time - position.entry_time > s.max_trade_duration_ms
        )

    def _close_position(
        self,
        position: Position,
        candle: Candle,
        index: int,
        exit_price: float,
        reason: ExitReason,
    ) -> ExitEvent:
        if position.side is PositionSide.LONG:
            pnl = (exit_price - position.entry_price) * position.size
        else:
            pnl = (position.entry_price - exit_price) * position.size
        initial_risk = position.risk_per_unit * position.size
        r_multiple = pnl / initial_risk if initial_risk > 0 else 0.0

        self._position = None
        self._total_trades += 1
        self._realized_pnl += pnl
        if pnl >= 0:
            self._winning_trades += 1
            self._consecutive_wins += 1
            self._consecutive_losses = 0
        else:
            self._consecutive_losses += 1
            self._consecutive_wins = 0

        logger.info(
            "strategy_exit",
            side=position.side.value,
            reason=reason.value,
            price=exit_price,
            pnl=pnl,
            r_multiple=r_multiple,
            index=index,
        )
        return ExitEvent(
            side=position.side,
            price=exit_price,
            pnl=pnl,
            r_multiple=r_multiple,
            index=index,
            timestamp=candle.close_time,
            reason=reason,
            trade_duration=index - position.entry_index,
        )

    def _ratchet_trailing_stop(self, candle: Candle) -> None:
        """Tighten the trailing stop from the best price seen; never loosen it."""
        position = self._position
        if position is None or position.trailing_stop is None:
            return
        offset = position.volatility_at_entry * self._settings.effective_trailing_multiplier
        best = position.best_price if position.best_price is not None else position.entry_price
        if position.side is PositionSide.LONG:
            position.best_price = max(best, candle.high)
            position.trailing_stop = max(position.trailing_stop, position.best_price - offset)
        else:
            position.best_price = min(best, candle.low)
            position.trailing_stop = min(position.trailing_stop, position.best_price + offset)

    # ------------------------------------------------------------------
    # Pullback setups
    # ------------------------------------------------------------------

    def _update_armed(self, candle: Candle, snapshot: IndicatorSnapshot) -> None:
        """Recompute the armed setups from the current bar alone.

        Level-triggered: every bar of an intact trend that closes on the far
        side of the fast EMA arms its setup again, and any other bar clears
        it. No cross of the previous close is required.
        """
        fast, slow, trend = snapshot.fast, snapshot.slow, snapshot.trend
        uptrend = fast > slow and candle.close > trend
        downtrend = fast < slow and candle.close < trend

        armed: set[tuple[PositionSide, PullbackDepth]] = set()
        if uptrend and candle.close < fast:
            if candle.low > slow:
                armed.add((PositionSide.LONG, PullbackDepth.DEEP))
            elif self._settings.allow_shallow_pullbacks and candle.low > trend:
                armed.add((PositionSide.LONG, PullbackDepth.SHALLOW))
        if downtrend and candle.close > fast:
            if candle.high < slow:
                armed.add((PositionSide.SHORT, PullbackDepth.DEEP))
            elif self._settings.allow_shallow_pullbacks and candle.high < trend:
                armed.add((PositionSide.SHORT, PullbackDepth.SHALLOW))
        self._armed = armed
