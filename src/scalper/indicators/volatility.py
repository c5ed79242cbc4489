"""Average True Range (the strategy's volatility range)."""

from typing import Literal

from scalper.indicators.base import StreamingIndicator
from scalper.indicators.moving_average import (
    ExponentialMovingAverage,
    SimpleMovingAverage,
)

Smoothing = Literal["wilder", "ema", "sma"]


def true_range(high: float, low: float, prev_close: float | None) -> float:
    """max(high - low, |high - prev_close|, |low - prev_close|).

    Without a previous close (first bar) the true range is high - low.
    """
    if prev_close is None:
        return high - low
    return max(high - low, abs(high - prev_close), abs(low - prev_close))


class AverageTrueRange(StreamingIndicator[float]):
    """ATR over ``period`` true ranges.

    Smoothing:
        - ``"wilder"`` (default): SMA of the first ``period`` true ranges, then
          ``(prev * (period - 1) + tr) / period``.
        - ``"ema"``: exponential average of true ranges.
        - ``"sma"``: rolling mean of the last ``period`` true ranges.

    Stable after ``period`` true ranges in every mode.
    """

    def __init__(self, period: int, smoothing: Smoothing = "wilder") -> None:
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")
        if smoothing not in ("wilder", "ema", "sma"):
            raise ValueError(f"unknown ATR smoothing {smoothing!r}")
        self.period = period
        self.smoothing = smoothing
        self._prev_close: float | None = None
        self._count = 0
        self._seed_sum = 0.0
        self._wilder: float | None = None
        self._average: StreamingIndicator[float] | None = None
        if smoothing == "ema":
            self._average = ExponentialMovingAverage(period)
        elif smoothing == "sma":
            self._average = SimpleMovingAverage(period)

    def update(self, high: float, low: float, close: float) -> None:
        tr = true_range(high, low, self._prev_close)
        self._prev_close = close
        self._count += 1

        if self._average is not None:
            self._average.update(tr)
            return

        if self._count <= self.period:
            self._seed_sum += tr
            if self._count == self.period:
                self._wilder = self._seed_sum / self.period
        else:
            assert self._wilder is not None
            self._wilder = (self._wilder * (self.period - 1) + tr) / self.period

    @property
    def is_stable(self) -> bool:
        return self._count >= self.period

    def result(self) -> float | None:
        if not self.is_stable:
            return None
        if self._average is not None:
            return self._average.result()
        return self._wilder

    def reset(self) -> None:
        self._prev_close = None
        self._count = 0
        self._seed_sum = 0.0
        self._wilder = None
        if self._average is not None:
            self._average.reset()
