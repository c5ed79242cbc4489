"""Streaming indicator contract.

Every indicator consumes one observation per update and produces a result
only once it has seen enough history to be stable. Before that, result()
returns None and decision logic must not branch on it.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

T = TypeVar("T")


class StreamingIndicator(ABC, Generic[T]):
    """Stateful accumulator with an explicit reset.

    Indicators never reset themselves; callers reset them when they
    reinitialise the whole strategy.
    """

    @property
    @abstractmethod
    def is_stable(self) -> bool:
        """True once the minimum observation window has been accumulated."""

    @abstractmethod
    def result(self) -> T | None:
        """Current value, or None while not yet stable."""

    @abstractmethod
    def reset(self) -> None:
        """Clear all accumulated history."""
