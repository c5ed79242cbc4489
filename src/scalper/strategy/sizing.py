"""Adaptive position sizing and entry confidence.

size = base * volatility_factor * streak_factor * confidence_factor,
rounded to 4 decimals and clamped to [min_position_size, max size].

- volatility_factor = clamp(baseline / ATR, 0.5, 1.5), where the baseline is
  ``min_volatility`` when configured and the current ATR otherwise.
- streak_factor = 0.5 after more than two consecutive losses, 1.2 after
  three or more consecutive wins, else 1.0.
- confidence_factor = 0.7 + 0.3 * confidence.
"""

from scalper.config import StrategySettings
from scalper.indicators.engine import IndicatorSnapshot
from scalper.strategy.models import MarketRegime, PositionSide, PullbackDepth

_BASE_CONFIDENCE = 0.6
_OSCILLATOR_BONUS = 0.15
_SECONDARY_BONUS = 0.1
_VOLUME_BONUS = 0.1
_TREND_BONUS = 0.1
_MAX_CONFIDENCE = 0.95


class PositionSizer:
    """Computes entry confidence and unit size from strategy settings."""

    def __init__(self, settings: StrategySettings) -> None:
        self._settings = settings

    def confidence(
        self,
        side: PositionSide,
        indicators: IndicatorSnapshot,
        regime: MarketRegime,
        volume_spike: bool,
        setup: PullbackDepth,
    ) -> float:
        """Bounded heuristic in [0, 1]; shallow setups are discounted."""
        s = self._settings
        confidence = _BASE_CONFIDENCE

        rsi = indicators.momentum_oscillator
        if side is PositionSide.LONG and rsi < s.oscillator_overbought:
            confidence += _OSCILLATOR_BONUS
        elif side is PositionSide.SHORT and rsi > s.oscillator_oversold:
            confidence += _OSCILLATOR_BONUS

        stoch = indicators.secondary_oscillator
        if stoch is not None:
            if side is PositionSide.LONG and stoch.k >= stoch.d:
                confidence += _SECONDARY_BONUS
            elif side is PositionSide.SHORT and stoch.k <= stoch.d:
                confidence += _SECONDARY_BONUS

        if s.volume_weighted and volume_spike:
            confidence += _VOLUME_BONUS
        if regime is MarketRegime.TRENDING:
            confidence += _TREND_BONUS

        confidence = min(_MAX_CONFIDENCE, confidence)
        if setup is PullbackDepth.SHALLOW:
            confidence *= s.shallow_confidence_factor
        return max(0.0, min(1.0, confidence))

    def size(
        self,
        volatility: float,
        confidence: float,
        consecutive_wins: int,
        consecutive_losses: int,
    ) -> float:
        s = self._settings
        upper = s.effective_max_position_size
        lower = s.min_position_size

        if not s.volatility_adjustment:
            return min(upper, max(lower, s.base_position_size))

        baseline = s.min_volatility if s.min_volatility > 0 else volatility
        if volatility > 0:
            volatility_factor = max(0.5, min(1.5, baseline / volatility))
        else:
            volatility_factor = 1.0

        if consecutive_losses > 2:
            streak_factor = 0.5
        elif consecutive_wins >= 3:
            streak_factor = 1.2
        else:
            streak_factor = 1.0

        confidence_factor = 0.7 + 0.3 * confidence
        size = s.base_position_size * volatility_factor * streak_factor * confidence_factor
        return min(upper, max(lower, round(size, 4)))
