"""Topic routing for combined-stream envelopes.

Binance combined streams wrap every payload as ``{"stream": <topic>,
"data": <payload>}``. The channel kind after the first ``@`` of the topic
selects the value-object parser and the handler. Unknown kinds are
ignored so that one unexpected topic never takes the connection down.
"""

import inspect
from collections.abc import Callable, Mapping
from typing import Any

from scalper.exceptions import MalformedMessageError
from scalper.logging import get_logger
from scalper.market_data.models import (
    BookTicker,
    DepthUpdate,
    KlineUpdate,
    Liquidation,
    MarkPriceUpdate,
    Ticker24h,
    Trade,
)

logger = get_logger(__name__)

Handler = Callable[[Any], Any]

_PARSERS: dict[str, Callable[[Mapping[str, Any]], Any]] = {
    "trade": Trade.from_trade_event,
    "aggTrade": Trade.from_agg_trade_event,
    "kline": KlineUpdate.from_event,
    "markPrice": MarkPriceUpdate.from_event,
    "forceOrder": Liquidation.from_event,
    "bookTicker": BookTicker.from_event,
    "ticker": Ticker24h.from_event,
    "depth": DepthUpdate.from_event,
}

# Channel kinds whose topic carries a parameter suffix (kline_1m, depth5@100ms)
_PREFIXED_KINDS = ("kline", "markPrice", "depth")


async def invoke_callback(callback: Callable[..., Any] | None, *args: Any) -> None:
    """Call a sync or async callback; no-op for None."""
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


def channel_kind(topic: str) -> str:
    """Return the channel kind of a topic, e.g. ``btcusdt@kline_1m`` -> ``kline``."""
    _, _, channel = topic.partition("@")
    channel = channel or topic
    for kind in _PREFIXED_KINDS:
        if channel.startswith(kind):
            return kind
    return channel.split("@", 1)[0]


class TopicRouter:
    """Dispatches envelopes to per-kind handlers.

    Handlers are registered by channel kind (``trade``, ``aggTrade``,
    ``kline``, ``markPrice``, ``forceOrder``, ``bookTicker``, ``ticker``,
    ``depth``) and
    receive the parsed value object. Handler exceptions are logged and
    isolated per message.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self.routed = 0
        self.ignored = 0

    def on(self, kind: str, handler: Handler) -> "TopicRouter":
        if kind not in _PARSERS:
            raise ValueError(f"unsupported channel kind {kind!r}")
        self._handlers.setdefault(kind, []).append(handler)
        return self

    def on_trade(self, handler: Handler) -> "TopicRouter":
        """Register for both ``@trade`` and ``@aggTrade`` ticks."""
        self.on("trade", handler)
        return self.on("aggTrade", handler)

    def on_kline(self, handler: Handler) -> "TopicRouter":
        return self.on("kline", handler)

    def on_mark_price(self, handler: Handler) -> "TopicRouter":
        return self.on("markPrice", handler)

    def on_liquidation(self, handler: Handler) -> "TopicRouter":
        return self.on("forceOrder", handler)

    def on_book_ticker(self, handler: Handler) -> "TopicRouter":
        return self.on("bookTicker", handler)

    def on_ticker(self, handler: Handler) -> "TopicRouter":
        return self.on("ticker", handler)

    def on_depth(self, handler: Handler) -> "TopicRouter":
        return self.on("depth", handler)

    async def dispatch(self, envelope: Mapping[str, Any]) -> bool:
        """Route one envelope. Returns False when the topic was ignored.

        Raises:
            MalformedMessageError: If the envelope or its payload cannot be
                parsed into the topic's value object.
        """
        if not isinstance(envelope, Mapping):
            raise MalformedMessageError(
                f"envelope must be an object, got {type(envelope).__name__}"
            )
        topic = envelope.get("stream")
        data = envelope.get("data")
        if not isinstance(topic, str) or not isinstance(data, Mapping):
            raise MalformedMessageError("envelope without 'stream' topic or 'data' object")

        kind = channel_kind(topic)
        parser = _PARSERS.get(kind)
        handlers = self._handlers.get(kind)
        if parser is None or not handlers:
            self.ignored += 1
            logger.debug("topic_ignored", topic=topic)
            return False

        try:
            item = parser(data)
        except (ValueError, TypeError, KeyError) as exc:
            # MalformedMessageError is itself a ValueError
            raise MalformedMessageError(f"{topic}: {exc}") from exc

        self.routed += 1
        for handler in handlers:
            try:
                await invoke_callback(handler, item)
            except Exception:
                logger.error("topic_handler_failed", topic=topic, exc_info=True)
        return True
