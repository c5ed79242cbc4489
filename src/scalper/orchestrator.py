"""Orchestrator -- wires the live feed to the strategy through a queue.

Data flow:
  1. WARM-UP: optionally prime the strategy's indicators from REST history
  2. FEED: one multiplexed stream per symbol; closed klines go into an
     asyncio.Queue, trades/mark price/liquidations/24h ticker/book updates go into
     the aggregation window
  3. CONSUME: a single consumer task applies candles to the strategy one
     at a time, in order, dropping duplicates and stale candles
  4. EMIT: strategy events and the per-candle market snapshot are handed
     to the registered sinks

The stream manager delivers at-least-once, so the consumer is the only
place candles are deduplicated. A fatal stream error (abandoned feed)
stops the orchestrator.
"""

import asyncio
from collections.abc import Callable, Iterable
from typing import Any

from scalper.config import AppSettings
from scalper.exchange.binance_client import BinanceKlineClient
from scalper.logging import get_logger
from scalper.market_data.aggregation import AggregationWindow, MarketSnapshot
from scalper.market_data.models import (
    BookTicker,
    Candle,
    DepthUpdate,
    KlineUpdate,
    Liquidation,
    MarkPriceUpdate,
    Ticker24h,
    Trade,
)
from scalper.strategy.models import StrategyEvent
from scalper.strategy.pullback import ScalpingPullbackStrategy
from scalper.stream.events import StreamErrored, StreamNotification
from scalper.stream.manager import StreamConnectionManager
from scalper.stream.router import TopicRouter, invoke_callback
from scalper.stream.state import StreamOptions

logger = get_logger(__name__)

EventSink = Callable[[StrategyEvent], Any]
SnapshotSink = Callable[[MarketSnapshot], Any]


class Orchestrator:
    """Runs one strategy instance against one symbol's live feed.

    Args:
        settings: Application-wide settings.
        manager: Stream connection manager owning the feed.
        strategy: The strategy instance; only the consumer task touches it.
        history: Optional REST client for indicator warm-up.
        event_sinks: Callables receiving each StrategyEvent (sync or async).
        snapshot_sinks: Callables receiving each per-candle MarketSnapshot.
    """

    def __init__(
        self,
        settings: AppSettings,
        manager: StreamConnectionManager,
        strategy: ScalpingPullbackStrategy,
        history: BinanceKlineClient | None = None,
        event_sinks: Iterable[EventSink] | None = None,
        snapshot_sinks: Iterable[SnapshotSink] | None = None,
    ) -> None:
        self._settings = settings
        self._manager = manager
        self._strategy = strategy
        self._history = history
        self._event_sinks: list[EventSink] = list(event_sinks or [])
        self._snapshot_sinks: list[SnapshotSink] = list(snapshot_sinks or [])

        feed = settings.feed
        self._symbol = feed.symbol.upper()
        self._window = AggregationWindow(self._symbol, feed.large_trade_notional)
        self._queue: asyncio.Queue[Candle] = asyncio.Queue()
        self._events: list[StrategyEvent] = []
        self._last_open_time: int | None = None
        self._candles_processed = 0
        self._duplicates_dropped = 0
        self._consumer_task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._running = False
        self._shutdown = asyncio.Event()
        self._fatal_error: BaseException | None = None

        self.stream_key = f"{feed.symbol.lower()}@{feed.interval}"

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def event_log(self) -> tuple[StrategyEvent, ...]:
        """Every event emitted so far, in order."""
        return tuple(self._events)

    @property
    def fatal_error(self) -> BaseException | None:
        return self._fatal_error

    def add_event_sink(self, sink: EventSink) -> None:
        self._event_sinks.append(sink)

    def add_snapshot_sink(self, sink: SnapshotSink) -> None:
        self._snapshot_sinks.append(sink)

    def get_status(self) -> dict[str, Any]:
        """Snapshot of orchestrator, strategy and stream state for reporting."""
        position = self._strategy.open_position
        stats = self._strategy.trade_statistics
        return {
            "running": self._running,
            "symbol": self._symbol,
            "queued_candles": self._queue.qsize(),
            "candles_processed": self._candles_processed,
            "duplicates_dropped": self._duplicates_dropped,
            "last_open_time": self._last_open_time,
            "events": len(self._events),
            "phase": self._strategy.phase.value,
            "market_regime": self._strategy.market_regime.value,
            "open_position": position.to_dict() if position else None,
            "consecutive_wins": stats.consecutive_wins,
            "consecutive_losses": stats.consecutive_losses,
            "realized_pnl": stats.realized_pnl,
            "streams": self._manager.get_connection_status(),
            "fatal_error": str(self._fatal_error) if self._fatal_error else None,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Start, then block until stop() or a fatal stream error."""
        await self.start()
        try:
            await self._shutdown.wait()
        finally:
            await self.stop()

    async def start(self) -> None:
        """Warm up, connect the feed and start the consumer task."""
        if self._running:
            logger.warning("orchestrator_already_running")
            return
        logger.info(
            "orchestrator_starting",
            symbol=self._symbol,
            interval=self._settings.feed.interval,
        )
        self._running = True
        self._shutdown.clear()

        await self._warm_up()

        self._consumer_task = asyncio.create_task(self._consume(), name="candle-consumer")
        self._manager.add_listener(self._on_stream_notification)

        stream = self._settings.stream
        options = StreamOptions(
            auto_reconnect=stream.auto_reconnect,
            connection_timeout_ms=stream.connection_timeout_ms,
            heartbeat_interval_ms=stream.heartbeat_interval_ms,
            router=self._build_router(),
        )
        await self._manager.connect(
            self.stream_key, options, topics=self._settings.feed.topics()
        )
        logger.info("orchestrator_started", stream_key=self.stream_key)

    def request_stop(self) -> None:
        """Ask run() to shut down; safe to call from a signal handler."""
        self._shutdown.set()

    async def stop(self) -> None:
        """Stop consuming, close all streams and the history client. Idempotent."""
        self._shutdown.set()
        if not self._running:
            return
        self._running = False
        logger.info("orchestrator_stopping")

        self._manager.remove_listener(self._on_stream_notification)
        await self._manager.close_all()

        if self._consumer_task is not None:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None

        if self._history is not None:
            try:
                await self._history.close()
            except Exception as e:
                logger.error("history_client_close_failed", error=str(e))

        logger.info(
            "orchestrator_stopped",
            candles_processed=self._candles_processed,
            events=len(self._events),
        )

    async def _warm_up(self) -> None:
        """Prime indicators from REST history; a failure only means a cold start."""
        history_settings = self._settings.history
        if self._history is None or not history_settings.enabled:
            return
        feed = self._settings.feed
        try:
            candles = await self._history.fetch_recent_candles(
                feed.symbol, feed.interval, history_settings.warmup_candles
            )
        except Exception as e:
            logger.error("warmup_failed", error=str(e), exc_info=True)
            return
        if not candles:
            logger.warning("warmup_returned_no_candles", symbol=self._symbol)
            return
        self._strategy.prime(candles)
        self._last_open_time = candles[-1].open_time

    # ------------------------------------------------------------------
    # Feed handlers (run on the stream's supervisor task)
    # ------------------------------------------------------------------

    def _build_router(self) -> TopicRouter:
        router = TopicRouter()
        router.on_kline(self._on_kline)
        router.on_trade(self._on_trade)
        router.on_mark_price(self._on_mark_price)
        router.on_liquidation(self._on_liquidation)
        router.on_book_ticker(self._on_book_ticker)
        router.on_ticker(self._on_ticker)
        router.on_depth(self._on_depth)
        return router

    def _on_kline(self, update: KlineUpdate) -> None:
        if update.is_closed:
            self._queue.put_nowait(update.candle)

    def _on_trade(self, trade: Trade) -> None:
        self._window.add_trade(trade)

    def _on_mark_price(self, update: MarkPriceUpdate) -> None:
        self._window.set_mark_price(update)

    def _on_liquidation(self, liquidation: Liquidation) -> None:
        self._window.add_liquidation(liquidation)
        logger.info(
            "liquidation",
            side=liquidation.side,
            price=liquidation.average_price,
            quantity=liquidation.filled_quantity,
            notional=liquidation.notional,
        )

    def _on_book_ticker(self, ticker: BookTicker) -> None:
        self._window.set_book_ticker(ticker)

    def _on_depth(self, depth: DepthUpdate) -> None:
        self._window.set_depth(depth)

    def _on_ticker(self, ticker: Ticker24h) -> None:
        self._window.set_ticker(ticker)

    def _on_stream_notification(self, notification: StreamNotification) -> None:
        if isinstance(notification, StreamErrored) and notification.fatal:
            self._fatal_error = notification.error
            logger.error(
                "feed_lost",
                stream_key=notification.stream_key,
                error=str(notification.error),
            )
            self._shutdown.set()

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    async def submit_candle(self, candle: Candle) -> None:
        """Queue a closed candle for the consumer."""
        await self._queue.put(candle)

    async def drain(self) -> None:
        """Wait until every queued candle has been processed."""
        await self._queue.join()

    async def _consume(self) -> None:
        """Apply queued candles to the strategy, strictly one at a time."""
        while True:
            candle = await self._queue.get()
            try:
                await self._process_candle(candle)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "candle_processing_failed",
                    open_time=candle.open_time,
                    error=str(e),
                    exc_info=True,
                )
            finally:
                self._queue.task_done()

    async def _process_candle(self, candle: Candle) -> None:
        if self._last_open_time is not None and candle.open_time <= self._last_open_time:
            self._duplicates_dropped += 1
            logger.debug("stale_candle_dropped", open_time=candle.open_time)
            return
        self._last_open_time = candle.open_time
        self._candles_processed += 1

        events = self._strategy.on_candle(candle)
        indicators = self._strategy.indicators.snapshot()
        snapshot = self._window.close_window(
            candle.close_time, indicators.to_dict() if indicators else None
        )
        logger.debug(
            "candle_processed",
            open_time=candle.open_time,
            close=candle.close,
            phase=self._strategy.phase.value,
            trades=snapshot.trade_count,
        )

        for sink in self._snapshot_sinks:
            try:
                await invoke_callback(sink, snapshot)
            except Exception as e:
                logger.error("snapshot_sink_failed", error=str(e), exc_info=True)

        for event in events:
            self._events.append(event)
            for sink in self._event_sinks:
                try:
                    await invoke_callback(sink, event)
                except Exception as e:
                    logger.error(
                        "event_sink_failed",
                        event_type=event.type,
                        error=str(e),
                        exc_info=True,
                    )
