"""Shared test fixtures for the streaming pullback scalper."""

import asyncio
import json
from collections.abc import Callable
from typing import Any

import pytest

from scalper.config import AppSettings, FeedSettings, HistorySettings, StreamSettings
from scalper.market_data.models import Candle

MINUTE_MS = 60_000


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (no warm-up, no heartbeat)."""
    return AppSettings(
        log_level="DEBUG",
        stream=StreamSettings(
            base_url="wss://example.test",
            heartbeat_interval_ms=0,
            connection_timeout_ms=1_000,
            close_timeout_seconds=0.5,
        ),
        feed=FeedSettings(symbol="BTCUSDT", interval="1m"),
        history=HistorySettings(enabled=False),
    )


# ---------------------------------------------------------------------------
# Candles
# ---------------------------------------------------------------------------


def _candle(index: int, open_: float, high: float, low: float, close: float, volume: float = 10.0) -> Candle:
    open_time = index * MINUTE_MS
    return Candle(
        open_time=open_time,
        open=open_,
        high=high,
        low=low,
        close=close,
        volume=volume,
        close_time=open_time + MINUTE_MS - 1,
        quote_volume=volume * close,
        trade_count=100,
        taker_buy_base_volume=volume / 2,
        taker_buy_quote_volume=volume * close / 2,
    )


@pytest.fixture
def make_candle() -> Callable[..., Candle]:
    """Factory: make_candle(index, open, high, low, close, volume=10.0)."""
    return _candle


def _uptrend(count: int = 60, start: float = 100.0, growth: float = 1.001) -> list[Candle]:
    """Monotonic uptrend: each close ~0.1% above the previous one."""
    candles = []
    prev_close = start
    for i in range(count):
        close = start * growth**i
        open_ = prev_close
        candles.append(_candle(i, open_, close * 1.0005, open_ * 0.9995, close))
        prev_close = close
    return candles


@pytest.fixture
def uptrend_candles() -> list[Candle]:
    """60 one-minute candles of a clean uptrend."""
    return _uptrend()


@pytest.fixture
def pullback_scenario() -> list[Candle]:
    """60 uptrend bars, a 1.5% pullback bar (2% low) and a resumption bar."""
    candles = _uptrend()
    peak = candles[-1].close
    pullback = _candle(60, peak, peak, peak * 0.981, peak * 0.985)
    resumption = _candle(61, peak * 0.985, peak * 1.0005, peak * 0.985 * 0.9995, peak)
    return [*candles, pullback, resumption]


def _reflect(candles: list[Candle], axis: float = 300.0) -> list[Candle]:
    """Mirror prices around ``axis``: an uptrend becomes a downtrend.

    Moving averages reflect, the ATR is unchanged and RSI becomes 100 - RSI,
    so every long decision on the input has a short twin on the output.
    """
    return [
        _candle(
            c.open_time // MINUTE_MS,
            axis - c.open,
            axis - c.low,
            axis - c.high,
            axis - c.close,
            c.volume,
        )
        for c in candles
    ]


@pytest.fixture
def mirror() -> Callable[[list[Candle]], list[Candle]]:
    """Factory: mirror(candles) reflects a scenario into its downtrend twin."""
    return _reflect


@pytest.fixture
def throwback_scenario(pullback_scenario) -> list[Candle]:
    """Downtrend twin of ``pullback_scenario``: a throwback then resumption."""
    return _reflect(pullback_scenario)


# ---------------------------------------------------------------------------
# Fake websocket transport
# ---------------------------------------------------------------------------

_CLOSE = object()
HANG = object()


class FakeTransport:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, frames: list[Any] | None = None, answer_pings: bool = True) -> None:
        self._inbox: asyncio.Queue = asyncio.Queue()
        for frame in frames or []:
            self.feed(frame)
        self.answer_pings = answer_pings
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self.closed = False
        self.pings = 0

    def feed(self, frame: Any) -> None:
        """Queue a frame; dicts are JSON-encoded."""
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._inbox.put_nowait(frame)

    def remote_close(self, code: int = 1000, reason: str = "") -> None:
        self.close_code = code
        self.close_reason = reason
        self._inbox.put_nowait(_CLOSE)

    def fail(self, error: BaseException) -> None:
        self._inbox.put_nowait(error)

    def __aiter__(self) -> "FakeTransport":
        return self

    async def __anext__(self) -> Any:
        item = await self._inbox.get()
        if item is _CLOSE:
            self.closed = True
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    async def ping(self) -> asyncio.Future:
        self.pings += 1
        waiter = asyncio.get_running_loop().create_future()
        if self.answer_pings:
            waiter.set_result(0.0)
        return waiter

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.close_code is None:
            self.close_code = 1000
        self._inbox.put_nowait(_CLOSE)


class FakeConnector:
    """Replays a list of outcomes: transports, exceptions or HANG.

    Once the list is exhausted every call fails with OSError.
    """

    def __init__(self, outcomes: list[Any] | None = None) -> None:
        self._outcomes = list(outcomes or [])
        self.urls: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.urls)

    async def __call__(self, url: str) -> Any:
        self.urls.append(url)
        outcome = self._outcomes.pop(0) if self._outcomes else OSError("connection refused")
        if outcome is HANG:
            await asyncio.Event().wait()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class RecordingSleep:
    """Backoff sleep that records delays and only yields to the loop."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def transport_factory() -> type[FakeTransport]:
    return FakeTransport


@pytest.fixture
def connector_factory() -> type[FakeConnector]:
    return FakeConnector


@pytest.fixture
def hang() -> object:
    """Connector outcome that never completes the handshake."""
    return HANG


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    """Poll a predicate until it holds; fail the test after ``timeout`` seconds."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                pytest.fail("condition not reached before timeout")
            await asyncio.sleep(0.005)

    return _wait


# ---------------------------------------------------------------------------
# Raw stream payloads
# ---------------------------------------------------------------------------


def kline_event(candle: Candle, symbol: str = "BTCUSDT", interval: str = "1m", closed: bool = True) -> dict:
    return {
        "e": "kline",
        "E": candle.close_time,
        "s": symbol,
        "k": {
            "t": candle.open_time,
            "T": candle.close_time,
            "s": symbol,
            "i": interval,
            "o": str(candle.open),
            "c": str(candle.close),
            "h": str(candle.high),
            "l": str(candle.low),
            "v": str(candle.volume),
            "n": candle.trade_count,
            "x": closed,
            "q": str(candle.quote_volume),
            "V": str(candle.taker_buy_base_volume),
            "Q": str(candle.taker_buy_quote_volume),
        },
    }


def agg_trade_event(price: float = 100.0, quantity: float = 1.0, buyer_maker: bool = False, trade_id: int = 1) -> dict:
    return {
        "e": "aggTrade",
        "E": 1_700_000_000_000,
        "s": "BTCUSDT",
        "a": trade_id,
        "p": str(price),
        "q": str(quantity),
        "T": 1_700_000_000_000,
        "m": buyer_maker,
    }


@pytest.fixture
def kline_payload() -> Callable[..., dict]:
    return kline_event


@pytest.fixture
def agg_trade_payload() -> Callable[..., dict]:
    return agg_trade_event
