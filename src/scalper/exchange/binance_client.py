"""Binance historical kline client via ccxt async.

Only used to warm up indicators before the live feed starts. Klines are
fetched through ccxt's implicit raw endpoints so that the full 11-slot
kline array (taker volumes, trade count) survives, then parsed into
Candle value objects.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import ccxt.async_support as ccxt_async

from scalper.config import HistorySettings
from scalper.exceptions import MalformedMessageError
from scalper.logging import get_logger
from scalper.market_data.models import Candle

logger = get_logger(__name__)

#: Binance caps one klines request at 1500 rows (futures) / 1000 (spot).
MAX_KLINES_PER_REQUEST = {"spot": 1000, "futures": 1500}


def _now_ms() -> int:
    return int(time.time() * 1000)


class BinanceKlineClient:
    """Fetches recent closed candles for indicator warm-up.

    Args:
        settings: Market selection and retry policy.
        exchange: Optional pre-built ccxt exchange (tests inject a mock).
        clock: Returns the current time in epoch milliseconds.
        sleep: Awaitable used between retries.
    """

    def __init__(
        self,
        settings: HistorySettings,
        exchange: Any | None = None,
        clock: Callable[[], int] = _now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._exchange = exchange or ccxt_async.binance({"enableRateLimit": True})
        self._clock = clock
        self._sleep = sleep

    @property
    def exchange(self) -> Any:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def close(self) -> None:
        """Close the ccxt session (CRITICAL for ccxt async)."""
        await self._exchange.close()
        logger.info("binance_client_closed")

    async def fetch_recent_candles(
        self, symbol: str, interval: str, limit: int | None = None
    ) -> list[Candle]:
        """Return up to ``limit`` most recent closed candles, oldest first.

        The still-forming bar (close time in the future) is dropped. Rows
        that fail to parse are skipped with a warning.
        """
        market = self._settings.market
        limit = min(limit or self._settings.warmup_candles, MAX_KLINES_PER_REQUEST[market])
        params = {"symbol": symbol.upper(), "interval": interval, "limit": limit}

        if market == "futures":
            endpoint = self._exchange.fapiPublicGetKlines
        else:
            endpoint = self._exchange.publicGetKlines

        rows = await self._request_klines(endpoint, params)
        now = self._clock()

        candles: list[Candle] = []
        skipped = 0
        for row in rows:
            try:
                candle = Candle.from_source(row)
            except MalformedMessageError as e:
                skipped += 1
                logger.warning("kline_row_skipped", symbol=symbol, error=str(e))
                continue
            if candle.close_time >= now:
                continue
            candles.append(candle)

        candles.sort(key=lambda c: c.open_time)
        logger.info(
            "historical_candles_fetched",
            symbol=symbol,
            interval=interval,
            market=market,
            count=len(candles),
            skipped=skipped,
        )
        return candles

    # ──────────────────────────────────────────────
    # Retry policy
    # ──────────────────────────────────────────────

    def retry_delay(self, failures: int, error: Exception) -> float:
        """Seconds to wait after the ``failures``-th consecutive failure.

        Doubles from ``retry_base_delay``; a rate-limit rejection waits three
        times as long so the weight budget can refill.
        """
        delay = self._settings.retry_base_delay * 2 ** (failures - 1)
        if isinstance(error, ccxt_async.RateLimitExceeded):
            delay *= 3
        return delay

    async def _request_klines(
        self, endpoint: Callable[..., Awaitable[list]], params: dict[str, Any]
    ) -> list:
        """Call a raw klines endpoint, retrying network-level failures.

        Exchange-side rejections (bad symbol, bad interval) are not retried.
        The last network error is re-raised once ``max_retries`` calls failed.
        """
        attempts = self._settings.max_retries
        failures = 0
        while True:
            try:
                return await endpoint(params)
            except ccxt_async.NetworkError as e:
                failures += 1
                if failures >= attempts:
                    logger.error(
                        "kline_request_failed",
                        symbol=params["symbol"],
                        attempts=failures,
                        error=str(e),
                    )
                    raise
                delay = self.retry_delay(failures, e)
                logger.warning(
                    "kline_request_retry",
                    symbol=params["symbol"],
                    attempt=failures,
                    max_retries=attempts,
                    delay=delay,
                    rate_limited=isinstance(e, ccxt_async.RateLimitExceeded),
                    error=str(e),
                )
                await self._sleep(delay)
