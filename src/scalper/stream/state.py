"""Per-stream configuration and runtime state."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from scalper.stream.router import TopicRouter


class Transport(Protocol):
    """The subset of a websocket client connection the manager relies on.

    Iterating yields inbound frames and ends (or raises) when the connection
    closes. ``ping()`` returns an awaitable that resolves on the pong.
    """

    close_code: int | None
    close_reason: str | None

    def __aiter__(self) -> Any: ...

    async def ping(self) -> Awaitable[Any]: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[Transport]]


class StreamStatus(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"
    ABANDONED = "abandoned"


@dataclass
class StreamOptions:
    """Per-stream connection options and callback hooks.

    Callbacks may be plain functions or coroutine functions. ``on_message``
    receives every decoded envelope; ``router`` dispatches the same envelope
    to typed per-topic handlers.

    Raises:
        ValueError: If a timeout or interval is out of range.
    """

    auto_reconnect: bool = True
    connection_timeout_ms: int = 10_000
    heartbeat_interval_ms: int = 30_000  # 0 disables the heartbeat
    on_open: Callable[..., Any] | None = None
    on_message: Callable[..., Any] | None = None
    on_error: Callable[..., Any] | None = None
    on_close: Callable[..., Any] | None = None
    router: "TopicRouter | None" = None

    def __post_init__(self) -> None:
        if self.connection_timeout_ms <= 0:
            raise ValueError(
                f"connection_timeout_ms must be positive, got {self.connection_timeout_ms}"
            )
        if self.heartbeat_interval_ms < 0:
            raise ValueError(
                f"heartbeat_interval_ms must be >= 0, got {self.heartbeat_interval_ms}"
            )


@dataclass
class ConnectionState:
    """Everything the manager owns for one logical stream.

    Lives in the manager's registry from connect() until close()/close_all().
    """

    stream_key: str
    topics: tuple[str, ...]
    url: str
    options: StreamOptions
    status: StreamStatus = StreamStatus.CONNECTING
    transport: Transport | None = None
    attempts: int = 0
    closing: bool = False
    liveness_lost: bool = False
    messages_received: int = 0
    malformed_messages: int = 0
    connected_at: float | None = None
    task: asyncio.Task | None = None  # type: ignore[type-arg]
    heartbeat_task: asyncio.Task | None = None  # type: ignore[type-arg]
    opened: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def is_active(self) -> bool:
        return self.status not in (StreamStatus.CLOSED, StreamStatus.ABANDONED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stream_key": self.stream_key,
            "url": self.url,
            "topics": list(self.topics),
            "status": self.status.value,
            "attempts": self.attempts,
            "messages_received": self.messages_received,
            "malformed_messages": self.malformed_messages,
            "connected_at": self.connected_at,
        }
