"""Entry point for the streaming pullback scalper.

Wires all components together and runs the orchestrator until SIGINT or
SIGTERM (graceful stop) or until the feed is abandoned.

Component wiring order (in _build_components):
1. AppSettings (configuration)
2. Logging setup
3. StreamConnectionManager (websocket feed)
4. ScalpingPullbackStrategy (decisions)
5. BinanceKlineClient (indicator warm-up, optional)
6. Orchestrator (queue between feed and strategy)
"""

import asyncio
import signal
from typing import Any

from scalper.config import AppSettings
from scalper.exchange.binance_client import BinanceKlineClient
from scalper.logging import get_logger, setup_logging
from scalper.orchestrator import Orchestrator
from scalper.strategy.models import StrategyEvent
from scalper.strategy.pullback import ScalpingPullbackStrategy
from scalper.stream.manager import StreamConnectionManager


def _log_event(event: StrategyEvent) -> None:
    """Default event sink: one structured log line per strategy event."""
    get_logger("scalper.events").info("strategy_event", **event.to_dict())


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all components from settings."""
    manager = StreamConnectionManager(settings.stream)
    strategy = ScalpingPullbackStrategy(settings.strategy)
    history = BinanceKlineClient(settings.history) if settings.history.enabled else None
    orchestrator = Orchestrator(
        settings,
        manager,
        strategy,
        history=history,
        event_sinks=[_log_event],
    )
    return {
        "manager": manager,
        "strategy": strategy,
        "history": history,
        "orchestrator": orchestrator,
    }


def _setup_signal_handlers(orchestrator: Orchestrator) -> None:
    """Register SIGINT/SIGTERM to stop the orchestrator gracefully.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("scalper.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        orchestrator.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


async def run() -> None:
    """Run the scalper until a stop signal or a fatal feed error."""
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("scalper.main")

    # 3-6. Build all components
    components = _build_components(settings)
    orchestrator: Orchestrator = components["orchestrator"]
    _setup_signal_handlers(orchestrator)

    logger.info(
        "scalper_starting",
        symbol=settings.feed.symbol,
        interval=settings.feed.interval,
        base_url=settings.stream.base_url,
        warmup=settings.history.enabled,
    )
    await orchestrator.run()

    if orchestrator.fatal_error is not None:
        logger.error("scalper_stopped_on_fatal_error", error=str(orchestrator.fatal_error))
    else:
        logger.info("scalper_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
