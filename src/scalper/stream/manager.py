"""Resilient streaming connection manager.

Each logical stream is driven by one supervisor task that owns the whole
connection lifecycle: handshake (bounded by the connect timeout), the read
loop, the heartbeat task and the reconnect backoff. Because the supervisor
is the only place a reconnect can be scheduled, two pending reconnects for
the same key are impossible.

Reconnect policy: after an error or any close not requested through
close(), wait ``min(base * 2**attempts, max)`` ms and try again, up to
``max_reconnect_attempts`` times. A successful open resets the counter.
When the ceiling is reached the stream is abandoned and a fatal
StreamErrored notification carrying StreamAbandonedError is emitted.
"""

import asyncio
import json
import time
from collections.abc import Awaitable, Callable, Coroutine, Iterable
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed

from scalper.config import StreamSettings
from scalper.exceptions import (
    HeartbeatTimeoutError,
    MalformedMessageError,
    StreamAbandonedError,
    StreamTimeoutError,
)
from scalper.logging import bound_stream, get_logger
from scalper.stream.events import (
    StreamConnected,
    StreamDisconnected,
    StreamErrored,
    StreamNotification,
)
from scalper.stream.router import invoke_callback
from scalper.stream.state import (
    ConnectionState,
    Connector,
    StreamOptions,
    StreamStatus,
    Transport,
)

logger = get_logger(__name__)

#: Close code reported when the transport did not supply one.
ABNORMAL_CLOSE_CODE = 1006
NORMAL_CLOSE_CODE = 1000

Listener = Callable[[StreamNotification], Any]


async def websocket_connector(url: str) -> Transport:
    """Open a websocket; pings are driven by the manager, not the library."""
    return await websockets.connect(
        url,
        ping_interval=None,
        open_timeout=None,
        compression=None,
    )


class StreamConnectionManager:
    """Registry of named streams with backoff reconnects and heartbeats.

    Args:
        settings: Base URL, reconnect bounds and close timeout.
        connector: Coroutine function opening a transport for a URL.
            Defaults to a websockets client connection.
        backoff_sleep: Awaitable sleep used between reconnect attempts.
    """

    def __init__(
        self,
        settings: StreamSettings,
        connector: Connector | None = None,
        backoff_sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._connector = connector or websocket_connector
        self._backoff_sleep = backoff_sleep
        self._connections: dict[str, ConnectionState] = {}
        self._listeners: list[Listener] = []
        self._tasks: set[asyncio.Task] = set()  # type: ignore[type-arg]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        """Subscribe to connected/disconnected/error notifications."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def build_url(self, topics: Iterable[str]) -> str:
        """One topic uses the raw endpoint, several use the combined endpoint."""
        topics = list(topics)
        if not topics:
            raise ValueError("at least one topic is required")
        base = self._settings.base_url.rstrip("/")
        if len(topics) == 1:
            return f"{base}/ws/{topics[0]}"
        return f"{base}/stream?streams={'/'.join(topics)}"

    def reconnect_delay_ms(self, attempts: int) -> int:
        """Backoff before reconnect attempt number ``attempts + 1``."""
        return min(
            self._settings.reconnect_base_delay_ms * 2**attempts,
            self._settings.reconnect_max_delay_ms,
        )

    async def connect(
        self,
        stream_key: str,
        options: StreamOptions | None = None,
        topics: Iterable[str] | None = None,
    ) -> ConnectionState:
        """Register a stream and start its supervisor.

        Returns immediately with the stream's state; ``state.opened`` is set
        once the transport is open. When ``topics`` is omitted the stream key
        is used as the single topic. Connecting a key that is already active
        returns the existing state.
        """
        existing = self._connections.get(stream_key)
        if existing is not None and existing.is_active:
            logger.warning("stream_already_connected", stream_key=stream_key)
            return existing

        options = options or StreamOptions(
            auto_reconnect=self._settings.auto_reconnect,
            connection_timeout_ms=self._settings.connection_timeout_ms,
            heartbeat_interval_ms=self._settings.heartbeat_interval_ms,
        )
        topic_list = tuple(topics) if topics is not None else (stream_key,)
        state = ConnectionState(
            stream_key=stream_key,
            topics=topic_list,
            url=self.build_url(topic_list),
            options=options,
        )
        self._connections[stream_key] = state
        state.task = self._spawn(self._supervise(state), name=f"stream:{stream_key}")
        logger.info("stream_registered", stream_key=stream_key, url=state.url)
        return state

    async def close(self, stream_key: str) -> None:
        """Close one stream and release all of its tasks. Idempotent."""
        state = self._connections.pop(stream_key, None)
        if state is None:
            return
        state.closing = True

        task = state.task
        if task is asyncio.current_task():
            # Called from one of this stream's own callbacks; closing the
            # transport ends the read loop and the supervisor exits on its own.
            await self._close_transport(state)
            return

        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        state.status = StreamStatus.CLOSED
        logger.info("stream_closed", stream_key=stream_key)

    async def close_all(self) -> None:
        """Close every registered stream. Safe to call repeatedly."""
        for stream_key in list(self._connections):
            try:
                await self.close(stream_key)
            except Exception:
                logger.error("stream_close_failed", stream_key=stream_key, exc_info=True)

    def get_state(self, stream_key: str) -> ConnectionState | None:
        return self._connections.get(stream_key)

    def get_connection_status(self) -> dict[str, dict[str, Any]]:
        """Status of every registered stream, keyed by stream key."""
        return {key: state.to_dict() for key, state in self._connections.items()}

    @property
    def active_connection_count(self) -> int:
        """Streams whose transport is currently open."""
        return sum(
            1 for state in self._connections.values() if state.status is StreamStatus.OPEN
        )

    @property
    def pending_task_count(self) -> int:
        """Supervisor and heartbeat tasks that have not finished yet."""
        return sum(1 for task in self._tasks if not task.done())

    # ------------------------------------------------------------------
    # Supervisor
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:  # type: ignore[type-arg]
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _supervise(self, state: ConnectionState) -> None:
        """Connect, read and reconnect until closed or abandoned."""
        with bound_stream(state.stream_key):
            try:
                await self._reconnect_loop(state)
            finally:
                if state.closing and state.status is not StreamStatus.ABANDONED:
                    state.status = StreamStatus.CLOSED

    async def _reconnect_loop(self, state: ConnectionState) -> None:
        while not state.closing:
            error: Exception | None = None
            try:
                transport = await self._open_transport(state)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = exc
            else:
                error = await self._run_session(state, transport)

            if state.closing:
                break
            if error is not None:
                logger.warning(
                    "stream_error",
                    error=str(error),
                    error_type=type(error).__name__,
                    attempts=state.attempts,
                )
                await self._report_error(state, error, fatal=False)

            if not state.options.auto_reconnect:
                state.status = StreamStatus.CLOSED
                logger.info("stream_not_reconnecting", reason="auto_reconnect disabled")
                break

            if state.attempts >= self._settings.max_reconnect_attempts:
                state.status = StreamStatus.ABANDONED
                abandoned = StreamAbandonedError(
                    state.stream_key,
                    f"gave up after {state.attempts} reconnect attempts",
                )
                logger.error("stream_abandoned", attempts=state.attempts)
                await self._report_error(state, abandoned, fatal=True)
                break

            delay_ms = self.reconnect_delay_ms(state.attempts)
            state.attempts += 1
            state.status = StreamStatus.RECONNECTING
            logger.info(
                "stream_reconnect_scheduled",
                attempt=state.attempts,
                delay_ms=delay_ms,
            )
            await self._backoff_sleep(delay_ms / 1000)

    async def _open_transport(self, state: ConnectionState) -> Transport:
        if state.status is not StreamStatus.RECONNECTING:
            state.status = StreamStatus.CONNECTING
        timeout_ms = state.options.connection_timeout_ms
        logger.debug("stream_connecting", url=state.url, timeout_ms=timeout_ms)
        try:
            async with asyncio.timeout(timeout_ms / 1000):
                return await self._connector(state.url)
        except TimeoutError:
            raise StreamTimeoutError(
                state.stream_key,
                f"handshake did not complete within {timeout_ms} ms",
            ) from None

    async def _run_session(self, state: ConnectionState, transport: Transport) -> Exception | None:
        """Read frames until the transport closes. Returns the error, if any."""
        state.transport = transport
        state.attempts = 0
        state.liveness_lost = False
        state.status = StreamStatus.OPEN
        state.connected_at = time.time()
        state.opened.set()
        logger.info("stream_connected", url=state.url, topics=len(state.topics))

        interval_ms = state.options.heartbeat_interval_ms
        if interval_ms > 0:
            state.heartbeat_task = self._spawn(
                self._heartbeat(state, transport, interval_ms / 1000),
                name=f"heartbeat:{state.stream_key}",
            )

        error: Exception | None = None
        try:
            await self._safe_callback(state, state.options.on_open, state.stream_key)
            await self._notify(StreamConnected(state.stream_key, state.url))
            async for raw in transport:
                state.messages_received += 1
                await self._handle_frame(state, raw)
        except ConnectionClosed:
            # Close code and reason are reported through the disconnect below
            pass
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = exc
        finally:
            await self._stop_heartbeat(state)
            await self._close_transport(state)
            state.transport = None
            state.opened.clear()
            if not state.closing:
                state.status = StreamStatus.RECONNECTING

            code = getattr(transport, "close_code", None)
            if code is None:
                code = NORMAL_CLOSE_CODE if state.closing else ABNORMAL_CLOSE_CODE
            reason = getattr(transport, "close_reason", None) or ""
            logger.info("stream_disconnected", code=code, reason=reason)
            await self._safe_callback(state, state.options.on_close, state.stream_key, code, reason)
            await self._notify(StreamDisconnected(state.stream_key, code, reason))

        if state.liveness_lost and error is None:
            error = HeartbeatTimeoutError(
                state.stream_key,
                f"no pong within {state.options.heartbeat_interval_ms} ms",
            )
        return error

    async def _handle_frame(self, state: ConnectionState, raw: str | bytes) -> None:
        """Decode and route one frame. Malformed frames are reported and dropped."""
        try:
            message = json.loads(raw)
            # Raw single-topic endpoints deliver bare payloads
            if len(state.topics) == 1 and not (
                isinstance(message, dict) and "stream" in message and "data" in message
            ):
                message = {"stream": state.topics[0], "data": message}
        except (ValueError, TypeError) as exc:
            await self._report_malformed(state, MalformedMessageError(f"invalid JSON frame: {exc}"))
            return

        await self._safe_callback(state, state.options.on_message, message)

        router = state.options.router
        if router is None:
            return
        try:
            await router.dispatch(message)
        except MalformedMessageError as exc:
            await self._report_malformed(state, exc)

    async def _report_malformed(self, state: ConnectionState, error: MalformedMessageError) -> None:
        state.malformed_messages += 1
        logger.warning("malformed_frame_dropped", error=str(error))
        await self._report_error(state, error, fatal=False)

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    async def _heartbeat(self, state: ConnectionState, transport: Transport, interval: float) -> None:
        """Ping every interval; a pong missing for one interval is a liveness failure."""
        while True:
            await asyncio.sleep(interval)
            try:
                pong_waiter = await transport.ping()
                async with asyncio.timeout(interval):
                    await pong_waiter
            except asyncio.CancelledError:
                raise
            except TimeoutError:
                state.liveness_lost = True
                logger.warning("heartbeat_timeout", interval_s=interval)
                await self._close_transport(state)
                return
            except Exception:
                # Ping on a closing connection; the read loop reports the close
                logger.debug("heartbeat_ping_failed", exc_info=True)
                return

    async def _stop_heartbeat(self, state: ConnectionState) -> None:
        task = state.heartbeat_task
        state.heartbeat_task = None
        if task is None or task is asyncio.current_task():
            return
        if not task.done():
            task.cancel()
        done, _ = await asyncio.wait({task}, timeout=self._settings.close_timeout_seconds)
        if not done:
            logger.error("heartbeat_task_not_stopped", timeout_s=self._settings.close_timeout_seconds)
            return
        if not task.cancelled() and task.exception() is not None:
            logger.error("heartbeat_task_failed", exc_info=task.exception())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _close_transport(self, state: ConnectionState) -> None:
        transport = state.transport
        if transport is None:
            return
        try:
            async with asyncio.timeout(self._settings.close_timeout_seconds):
                await transport.close()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.debug("transport_close_failed", exc_info=True)

    async def _report_error(self, state: ConnectionState, error: Exception, fatal: bool) -> None:
        await self._safe_callback(state, state.options.on_error, state.stream_key, error)
        await self._notify(StreamErrored(state.stream_key, error, fatal))

    async def _safe_callback(
        self, state: ConnectionState, callback: Callable[..., Any] | None, *args: Any
    ) -> None:
        try:
            await invoke_callback(callback, *args)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.error(
                "stream_callback_failed",
                stream_key=state.stream_key,
                callback=getattr(callback, "__name__", repr(callback)),
                exc_info=True,
            )

    async def _notify(self, notification: StreamNotification) -> None:
        for listener in list(self._listeners):
            try:
                await invoke_callback(listener, notification)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error(
                    "stream_listener_failed",
                    notification=type(notification).__name__,
                    exc_info=True,
                )
