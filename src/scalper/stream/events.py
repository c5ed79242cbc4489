"""Notifications emitted by the stream connection manager.

Listeners receive one of these per lifecycle transition; the manager itself
never inspects payload content beyond topic routing.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class StreamConnected:
    stream_key: str
    url: str


@dataclass(frozen=True)
class StreamDisconnected:
    stream_key: str
    code: int | None
    reason: str


@dataclass(frozen=True)
class StreamErrored:
    """A stream error. ``fatal`` is True only when the stream was abandoned."""

    stream_key: str
    error: BaseException
    fatal: bool = False


StreamNotification = StreamConnected | StreamDisconnected | StreamErrored
