"""Immutable market data value objects parsed from exchange feeds.

Exchange payloads carry numerics as strings ("63012.55") or numbers and come
either as fixed-position arrays (REST klines) or keyed objects (stream
events). Every constructor here normalizes those encodings into typed float
and int fields; a value that cannot be parsed raises MalformedMessageError
for that record only.

Field letters in the ``from_*_event`` helpers follow the Binance stream
payload keys (e.g. ``p`` = price, ``q`` = quantity, ``T`` = trade time).
"""

import math
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from scalper.exceptions import MalformedMessageError

#: Named-field order of the 11-slot kline array returned by REST endpoints.
CANDLE_FIELDS = (
    "openTime",
    "open",
    "high",
    "low",
    "close",
    "volume",
    "closeTime",
    "quoteVolume",
    "trades",
    "takerBuyBaseVolume",
    "takerBuyQuoteVolume",
)


def to_float(value: Any, name: str) -> float:
    """Parse a numeric field that may be string-encoded.

    NaN and infinities are rejected: a single one would poison every
    running indicator that consumes it.
    """
    if isinstance(value, bool):
        raise MalformedMessageError(f"invalid numeric value for {name}: {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise MalformedMessageError(
            f"invalid numeric value for {name}: {value!r}"
        ) from None
    if not math.isfinite(number):
        raise MalformedMessageError(f"non-finite value for {name}: {value!r}")
    return number


def to_int(value: Any, name: str) -> int:
    """Parse an integer field (timestamps, counts) that may be string-encoded."""
    if isinstance(value, bool):
        raise MalformedMessageError(f"invalid integer value for {name}: {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        pass
    # "1700000000000.0" style values
    number = to_float(value, name)
    if not number.is_integer():
        raise MalformedMessageError(f"invalid integer value for {name}: {value!r}")
    return int(number)


def to_bool(value: Any, name: str) -> bool:
    """Parse a flag sent either as a JSON boolean or as "true"/"false"."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise MalformedMessageError(f"invalid boolean value for {name}: {value!r}")


def _require(data: Mapping[str, Any], key: str) -> Any:
    try:
        return data[key]
    except KeyError:
        raise MalformedMessageError(f"missing required field {key!r}") from None
    except TypeError:
        raise MalformedMessageError(
            f"expected an object, got {type(data).__name__}"
        ) from None


def _ms_to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


@dataclass(frozen=True)
class Candle:
    """A single OHLCV candle.

    Times are exchange epoch milliseconds. Invariants checked on
    construction: prices and volume are finite, close_time > open_time,
    high >= max(open, close) and low <= min(open, close).
    """

    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: int
    quote_volume: float = 0.0
    trade_count: int = 0
    taker_buy_base_volume: float = 0.0
    taker_buy_quote_volume: float = 0.0

    def __post_init__(self) -> None:
        for name in ("open", "high", "low", "close", "volume"):
            if not math.isfinite(getattr(self, name)):
                raise MalformedMessageError(
                    f"candle {name} is not finite at {self.open_time}"
                )
        if self.close_time <= self.open_time:
            raise MalformedMessageError(
                f"candle close_time {self.close_time} must be after open_time {self.open_time}"
            )
        if self.high < max(self.open, self.close):
            raise MalformedMessageError(
                f"candle high {self.high} below max(open, close) at {self.open_time}"
            )
        if self.low > min(self.open, self.close):
            raise MalformedMessageError(
                f"candle low {self.low} above min(open, close) at {self.open_time}"
            )

    @classmethod
    def from_source(cls, data: Sequence[Any] | Mapping[str, Any]) -> "Candle":
        """Build a candle from the REST array form or the named-field object form.

        Array form: ``[openTime, open, high, low, close, volume, closeTime,
        quoteVolume, trades, takerBuyBaseVolume, takerBuyQuoteVolume, ignore?]``.
        Object form uses the same names as keys.
        """
        if isinstance(data, Mapping):
            values = [_require(data, name) for name in CANDLE_FIELDS]
        elif isinstance(data, Sequence) and not isinstance(data, (str, bytes)):
            if len(data) < len(CANDLE_FIELDS):
                raise MalformedMessageError(
                    f"kline array needs {len(CANDLE_FIELDS)} slots, got {len(data)}"
                )
            values = list(data[: len(CANDLE_FIELDS)])
        else:
            raise MalformedMessageError(
                f"unsupported candle encoding: {type(data).__name__}"
            )

        return cls(
            open_time=to_int(values[0], "openTime"),
            open=to_float(values[1], "open"),
            high=to_float(values[2], "high"),
            low=to_float(values[3], "low"),
            close=to_float(values[4], "close"),
            volume=to_float(values[5], "volume"),
            close_time=to_int(values[6], "closeTime"),
            quote_volume=to_float(values[7], "quoteVolume"),
            trade_count=to_int(values[8], "trades"),
            taker_buy_base_volume=to_float(values[9], "takerBuyBaseVolume"),
            taker_buy_quote_volume=to_float(values[10], "takerBuyQuoteVolume"),
        )

    @classmethod
    def from_kline_payload(cls, k: Mapping[str, Any]) -> "Candle":
        """Build a candle from the ``k`` object of a kline stream event."""
        return cls(
            open_time=to_int(_require(k, "t"), "t"),
            open=to_float(_require(k, "o"), "o"),
            high=to_float(_require(k, "h"), "h"),
            low=to_float(_require(k, "l"), "l"),
            close=to_float(_require(k, "c"), "c"),
            volume=to_float(_require(k, "v"), "v"),
            close_time=to_int(_require(k, "T"), "T"),
            quote_volume=to_float(_require(k, "q"), "q"),
            trade_count=to_int(_require(k, "n"), "n"),
            taker_buy_base_volume=to_float(_require(k, "V"), "V"),
            taker_buy_quote_volume=to_float(_require(k, "Q"), "Q"),
        )

    @property
    def open_datetime(self) -> datetime:
        return _ms_to_datetime(self.open_time)

    @property
    def close_datetime(self) -> datetime:
        return _ms_to_datetime(self.close_time)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def body(self) -> float:
        return self.close - self.open

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict including derived fields."""
        payload = asdict(self)
        payload.update(
            open_date=self.open_datetime.isoformat(),
            close_date=self.close_datetime.isoformat(),
            range=self.range,
            body=self.body,
            is_bullish=self.is_bullish,
            is_bearish=self.is_bearish,
        )
        return payload


@dataclass(frozen=True)
class KlineUpdate:
    """A kline stream event: the candle plus whether its interval has closed."""

    symbol: str
    interval: str
    candle: Candle
    is_closed: bool

    @classmethod
    def from_event(cls, data: Mapping[str, Any]) -> "KlineUpdate":
        k = _require(data, "k")
        if not isinstance(k, Mapping):
            raise MalformedMessageError("kline event payload 'k' is not an object")
        return cls(
            symbol=str(k.get("s") or _require(data, "s")),
            interval=str(_require(k, "i")),
            candle=Candle.from_kline_payload(k),
            is_closed=to_bool(k.get("x", False), "x"),
        )


@dataclass(frozen=True)
class Trade:
    """A single executed trade (tick)."""

    id: int
    price: float
    quantity: float
    timestamp: int
    is_buyer_maker: bool
    symbol: str

    @classmethod
    def from_trade_event(cls, data: Mapping[str, Any]) -> "Trade":
        """Parse a ``@trade`` event."""
        return cls(
            id=to_int(_require(data, "t"), "t"),
            price=to_float(_require(data, "p"), "p"),
            quantity=to_float(_require(data, "q"), "q"),
            timestamp=to_int(_require(data, "T"), "T"),
            is_buyer_maker=to_bool(_require(data, "m"), "m"),
            symbol=str(_require(data, "s")),
        )

    @classmethod
    def from_agg_trade_event(cls, data: Mapping[str, Any]) -> "Trade":
        """Parse an ``@aggTrade`` event (aggregate id in ``a``)."""
        return cls(
            id=to_int(_require(data, "a"), "a"),
            price=to_float(_require(data, "p"), "p"),
            quantity=to_float(_require(data, "q"), "q"),
            timestamp=to_int(_require(data, "T"), "T"),
            is_buyer_maker=to_bool(_require(data, "m"), "m"),
            symbol=str(_require(data, "s")),
        )

    @property
    def notional(self) -> float:
        return self.price * self.quantity

    @property
    def is_buy(self) -> bool:
        """Taker bought (the buyer was not the maker)."""
        return not self.is_buyer_maker

    @property
    def is_sell(self) -> bool:
        return self.is_buyer_maker

    @property
    def traded_at(self) -> datetime:
        return _ms_to_datetime(self.timestamp)


@dataclass(frozen=True)
class MarkPriceUpdate:
    """Mark price, index price and funding rate of a perpetual contract."""

    symbol: str
    event_time: int
    mark_price: float
    index_price: float
    funding_rate: float
    next_funding_time: int

    @classmethod
    def from_event(cls, data: Mapping[str, Any]) -> "MarkPriceUpdate":
        return cls(
            symbol=str(_require(data, "s")),
            event_time=to_int(_require(data, "E"), "E"),
            mark_price=to_float(_require(data, "p"), "p"),
            index_price=to_float(_require(data, "i"), "i"),
            funding_rate=to_float(_require(data, "r"), "r"),
            next_funding_time=to_int(_require(data, "T"), "T"),
        )

    @property
    def basis(self) -> float:
        return self.mark_price - self.index_price


@dataclass(frozen=True)
class Liquidation:
    """A forced liquidation order (``@forceOrder``)."""

    symbol: str
    side: str  # "BUY" or "SELL"
    price: float
    average_price: float
    quantity: float
    filled_quantity: float
    status: str
    trade_time: int

    @classmethod
    def from_event(cls, data: Mapping[str, Any]) -> "Liquidation":
        order = _require(data, "o")
        return cls(
            symbol=str(_require(order, "s")),
            side=str(_require(order, "S")),
            price=to_float(_require(order, "p"), "p"),
            average_price=to_float(_require(order, "ap"), "ap"),
            quantity=to_float(_require(order, "q"), "q"),
            filled_quantity=to_float(_require(order, "z"), "z"),
            status=str(order.get("X", "")),
            trade_time=to_int(_require(order, "T"), "T"),
        )

    @property
    def notional(self) -> float:
        return self.average_price * self.filled_quantity


@dataclass(frozen=True)
class BookTicker:
    """Best bid/ask snapshot."""

    symbol: str
    update_id: int
    bid_price: float
    bid_quantity: float
    ask_price: float
    ask_quantity: float

    @classmethod
    def from_event(cls, data: Mapping[str, Any]) -> "BookTicker":
        return cls(
            symbol=str(_require(data, "s")),
            update_id=to_int(_require(data, "u"), "u"),
            bid_price=to_float(_require(data, "b"), "b"),
            bid_quantity=to_float(_require(data, "B"), "B"),
            ask_price=to_float(_require(data, "a"), "a"),
            ask_quantity=to_float(_require(data, "A"), "A"),
        )

    @property
    def spread(self) -> float:
        return self.ask_price - self.bid_price

    @property
    def mid_price(self) -> float:
        return (self.bid_price + self.ask_price) / 2

    @property
    def imbalance(self) -> float:
        """(bid qty - ask qty) / total qty, in [-1, 1]; 0 for an empty book."""
        total = self.bid_quantity + self.ask_quantity
        if total <= 0:
            return 0.0
        return (self.bid_quantity - self.ask_quantity) / total


@dataclass(frozen=True)
class Ticker24h:
    """Rolling 24-hour statistics from the ``@ticker`` stream."""

    symbol: str
    event_time: int
    price_change: float
    price_change_percent: float
    open_price: float
    high_price: float
    low_price: float
    last_price: float
    base_volume: float
    quote_volume: float

    @classmethod
    def from_event(cls, data: Mapping[str, Any]) -> "Ticker24h":
        return cls(
            symbol=str(_require(data, "s")),
            event_time=to_int(_require(data, "E"), "E"),
            price_change=to_float(_require(data, "p"), "p"),
            price_change_percent=to_float(_require(data, "P"), "P"),
            open_price=to_float(_require(data, "o"), "o"),
            high_price=to_float(_require(data, "h"), "h"),
            low_price=to_float(_require(data, "l"), "l"),
            last_price=to_float(_require(data, "c"), "c"),
            base_volume=to_float(_require(data, "v"), "v"),
            quote_volume=to_float(_require(data, "q"), "q"),
        )

    @property
    def range_position(self) -> float:
        """Where the last price sits in the 24h range: 0 at the low, 1 at the high."""
        span = self.high_price - self.low_price
        if span <= 0:
            return 0.5
        return (self.last_price - self.low_price) / span


@dataclass(frozen=True)
class DepthUpdate:
    """Top-of-book depth levels as (price, quantity) pairs."""

    update_id: int
    bids: tuple[tuple[float, float], ...] = field(default_factory=tuple)
    asks: tuple[tuple[float, float], ...] = field(default_factory=tuple)

    @classmethod
    def from_event(cls, data: Mapping[str, Any]) -> "DepthUpdate":
        # Futures partial depth uses b/a, spot partial depth uses bids/asks
        bids = data.get("b", data.get("bids"))
        asks = data.get("a", data.get("asks"))
        if bids is None or asks is None:
            raise MalformedMessageError("depth event without bids/asks")
        update_id = data.get("u", data.get("lastUpdateId"))
        if update_id is None:
            raise MalformedMessageError("depth event without update id")
        return cls(
            update_id=to_int(update_id, "u"),
            bids=tuple((to_float(p, "bid price"), to_float(q, "bid qty")) for p, q in bids),
            asks=tuple((to_float(p, "ask price"), to_float(q, "ask qty")) for p, q in asks),
        )

    @property
    def imbalance(self) -> float:
        bid_total = sum(q for _, q in self.bids)
        ask_total = sum(q for _, q in self.asks)
        total = bid_total + ask_total
        if total <= 0:
            return 0.0
        return (bid_total - ask_total) / total
