"""Exponential and simple moving averages over a stream of closes."""

from collections import deque

from scalper.indicators.base import StreamingIndicator


def _check_period(period: int) -> int:
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")
    return period


class ExponentialMovingAverage(StreamingIndicator[float]):
    """EMA with alpha = 2 / (period + 1), seeded with the first observation.

    Stable after ``period`` observations.
    """

    def __init__(self, period: int) -> None:
        self.period = _check_period(period)
        self._alpha = 2.0 / (period + 1)
        self._value: float | None = None
        self._count = 0

    def update(self, value: float) -> None:
        if self._value is None:
            self._value = value
        else:
            self._value = self._alpha * value + (1.0 - self._alpha) * self._value
        self._count += 1

    @property
    def is_stable(self) -> bool:
        return self._count >= self.period

    def result(self) -> float | None:
        return self._value if self.is_stable else None

    def reset(self) -> None:
        self._value = None
        self._count = 0


class SimpleMovingAverage(StreamingIndicator[float]):
    """Mean of the last ``period`` observations; stable once the window is full."""

    def __init__(self, period: int) -> None:
        self.period = _check_period(period)
        self._window: deque[float] = deque(maxlen=period)

    def update(self, value: float) -> None:
        self._window.append(value)

    @property
    def is_stable(self) -> bool:
        return len(self._window) == self.period

    def result(self) -> float | None:
        if not self.is_stable:
            return None
        return sum(self._window) / self.period

    def reset(self) -> None:
        self._window.clear()
