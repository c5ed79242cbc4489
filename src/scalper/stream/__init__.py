"""Streaming connection management: registry, per-stream state and topic routing."""

from scalper.stream.events import (
    StreamConnected,
    StreamDisconnected,
    StreamErrored,
    StreamNotification,
)
from scalper.stream.manager import StreamConnectionManager, websocket_connector
from scalper.stream.router import TopicRouter, channel_kind, invoke_callback
from scalper.stream.state import ConnectionState, StreamOptions, StreamStatus, Transport

__all__ = [
    "ConnectionState",
    "StreamConnected",
    "StreamConnectionManager",
    "StreamDisconnected",
    "StreamErrored",
    "StreamNotification",
    "StreamOptions",
    "StreamStatus",
    "TopicRouter",
    "Transport",
    "channel_kind",
    "invoke_callback",
    "websocket_connector",
]
