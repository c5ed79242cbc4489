"""Custom exceptions for the streaming pullback scalper.

Stream, parsing and strategy exceptions live here to avoid circular
imports between the market data, stream and strategy packages.
"""


class ScalperError(Exception):
    """Base exception for all scalper errors."""


class MalformedMessageError(ScalperError, ValueError):
    """Raised when an inbound record cannot be parsed into a value object.

    Covers missing required fields, non-numeric values in numeric fields and
    records that violate the value object's invariants (e.g. high < low).
    """


class StreamError(ScalperError):
    """Base class for transport-level stream failures."""

    def __init__(self, stream_key: str, message: str) -> None:
        super().__init__(f"{stream_key}: {message}")
        self.stream_key = stream_key


class StreamTimeoutError(StreamError):
    """Raised when the connection handshake does not finish in time."""


class HeartbeatTimeoutError(StreamError):
    """Raised when a heartbeat ping is not answered within one interval."""


class StreamAbandonedError(StreamError):
    """Raised when a stream exhausted its reconnect attempts.

    No further automatic attempts are made for the stream.
    """


class CandleOrderError(ScalperError):
    """Raised when a candle arrives out of order for a strategy instance."""


class PositionInvariantError(ScalperError, AssertionError):
    """Raised when the strategy would hold more than one open position."""
