"""Momentum oscillators: RSI and the stochastic oscillator."""

from collections import deque
from dataclasses import dataclass

from scalper.indicators.base import StreamingIndicator
from scalper.indicators.moving_average import SimpleMovingAverage


class RelativeStrengthIndex(StreamingIndicator[float]):
    """Wilder RSI.

    The first ``period`` price changes seed the average gain/loss with a
    simple mean; later changes are smoothed with
    ``avg = (avg * (period - 1) + x) / period``. Stable after ``period``
    changes, i.e. ``period + 1`` prices. Returns 100 when the average loss
    is zero.
    """

    def __init__(self, period: int) -> None:
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")
        self.period = period
        self._prev: float | None = None
        self._changes = 0
        self._avg_gain = 0.0
        self._avg_loss = 0.0

    def update(self, value: float) -> None:
        if self._prev is None:
            self._prev = value
            return

        change = value - self._prev
        self._prev = value
        gain = change if change > 0 else 0.0
        loss = -change if change < 0 else 0.0
        self._changes += 1

        if self._changes <= self.period:
            self._avg_gain += gain / self.period
            self._avg_loss += loss / self.period
        else:
            n = self.period
            self._avg_gain = (self._avg_gain * (n - 1) + gain) / n
            self._avg_loss = (self._avg_loss * (n - 1) + loss) / n

    @property
    def is_stable(self) -> bool:
        return self._changes >= self.period

    def result(self) -> float | None:
        if not self.is_stable:
            return None
        if self._avg_loss == 0:
            return 100.0
        rs = self._avg_gain / self._avg_loss
        return 100.0 - 100.0 / (1.0 + rs)

    def reset(self) -> None:
        self._prev = None
        self._changes = 0
        self._avg_gain = 0.0
        self._avg_loss = 0.0


@dataclass(frozen=True)
class StochasticResult:
    """Smoothed %K and its signal line %D, both in [0, 100]."""

    k: float
    d: float


class StochasticOscillator(StreamingIndicator[StochasticResult]):
    """Slow stochastic: raw %K over ``period`` bars, %K = SMA(raw), %D = SMA(%K).

    Raw %K is 0 when the high/low window has zero range.
    """

    def __init__(self, period: int, k_smoothing: int = 3, d_smoothing: int = 3) -> None:
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")
        self.period = period
        self._highs: deque[float] = deque(maxlen=period)
        self._lows: deque[float] = deque(maxlen=period)
        self._k = SimpleMovingAverage(k_smoothing)
        self._d = SimpleMovingAverage(d_smoothing)

    def update(self, high: float, low: float, close: float) -> None:
        self._highs.append(high)
        self._lows.append(low)
        if len(self._highs) < self.period:
            return

        highest = max(self._highs)
        lowest = min(self._lows)
        span = highest - lowest
        raw_k = 100.0 * (close - lowest) / span if span > 0 else 0.0

        self._k.update(raw_k)
        k = self._k.result()
        if k is not None:
            self._d.update(k)

    @property
    def is_stable(self) -> bool:
        return self._d.is_stable

    def result(self) -> StochasticResult | None:
        k = self._k.result()
        d = self._d.result()
        if k is None or d is None:
            return None
        return StochasticResult(k=k, d=d)

    def reset(self) -> None:
        self._highs.clear()
        self._lows.clear()
        self._k.reset()
        self._d.reset()
