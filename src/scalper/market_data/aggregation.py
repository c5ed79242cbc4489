"""Per-candle aggregation of market micro-structure from the live feed.

Trades, liquidations, mark price, 24h ticker and book updates arrive far more often than
candles. AggregationWindow accumulates them between two closed candles and
is reset at each emission boundary, so every MarketSnapshot describes exactly
one candle interval.
"""

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

from scalper.market_data.models import (
    BookTicker,
    DepthUpdate,
    Liquidation,
    MarkPriceUpdate,
    Ticker24h,
    Trade,
)

#: Trades at or above this quote notional count as "large".
DEFAULT_LARGE_TRADE_NOTIONAL = 10_000.0


@dataclass(frozen=True)
class MarketSnapshot:
    """Market state for one candle interval, emitted when the candle closes."""

    symbol: str
    window_start: int | None  # first event time seen in the window (ms)
    window_end: int  # close time of the candle that ended the window (ms)
    trade_count: int
    large_trade_count: int
    taker_buy_quote: float
    taker_sell_quote: float
    liquidation_count: int
    liquidation_volume: float
    last_price: float | None
    mark_price: float | None
    index_price: float | None
    funding_rate: float | None
    spread: float | None
    book_imbalance: float | None
    depth_imbalance: float | None
    price_change_percent_24h: float | None = None
    quote_volume_24h: float | None = None
    open_24h: float | None = None
    high_24h: float | None = None
    low_24h: float | None = None
    # Strategy indicator values at the candle close; None during warm-up
    indicators: dict[str, float | None] | None = None

    @property
    def taker_buy_ratio(self) -> float:
        """Share of taker volume that was buying; 0 when no trades."""
        total = self.taker_buy_quote + self.taker_sell_quote
        if total <= 0:
            return 0.0
        return self.taker_buy_quote / total

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["taker_buy_ratio"] = self.taker_buy_ratio
        return payload


class AggregationWindow:
    """Accumulator for one symbol's feed between closed candles.

    Period counters (trade flow, liquidations) reset on every
    close_window(); last-seen prices, 24h statistics and book state carry over because they
    remain valid until the next update.

    Args:
        symbol: Symbol this window aggregates.
        large_trade_notional: Quote notional threshold for large trades.
    """

    def __init__(
        self,
        symbol: str,
        large_trade_notional: float = DEFAULT_LARGE_TRADE_NOTIONAL,
    ) -> None:
        self.symbol = symbol
        self._large_trade_notional = large_trade_notional

        self._window_start: int | None = None
        self._trade_count = 0
        self._large_trade_count = 0
        self._taker_buy_quote = 0.0
        self._taker_sell_quote = 0.0
        self._liquidation_count = 0
        self._liquidation_volume = 0.0

        self._last_price: float | None = None
        self._mark: MarkPriceUpdate | None = None
        self._book: BookTicker | None = None
        self._depth: DepthUpdate | None = None
        self._ticker: Ticker24h | None = None

    @property
    def trade_count(self) -> int:
        return self._trade_count

    def _touch(self, event_time: int) -> None:
        if self._window_start is None:
            self._window_start = event_time

    def add_trade(self, trade: Trade) -> None:
        self._touch(trade.timestamp)
        notional = trade.notional
        self._trade_count += 1
        self._last_price = trade.price
        if trade.is_buyer_maker:
            # Buyer is maker: the aggressor sold
            self._taker_sell_quote += notional
        else:
            self._taker_buy_quote += notional
        if notional >= self._large_trade_notional:
            self._large_trade_count += 1

    def add_liquidation(self, liquidation: Liquidation) -> None:
        self._touch(liquidation.trade_time)
        self._liquidation_count += 1
        self._liquidation_volume += liquidation.notional

    def set_mark_price(self, update: MarkPriceUpdate) -> None:
        self._touch(update.event_time)
        self._mark = update

    def set_book_ticker(self, ticker: BookTicker) -> None:
        self._book = ticker

    def set_depth(self, depth: DepthUpdate) -> None:
        self._depth = depth

    def set_ticker(self, ticker: Ticker24h) -> None:
        self._touch(ticker.event_time)
        self._ticker = ticker

    def close_window(
        self,
        closed_at: int,
        indicators: Mapping[str, float | None] | None = None,
    ) -> MarketSnapshot:
        """Emit the snapshot for the interval ending at ``closed_at`` and reset.

        ``indicators`` is copied into the snapshot as-is.
        """
        ticker = self._ticker
        snapshot = MarketSnapshot(
            symbol=self.symbol,
            window_start=self._window_start,
            window_end=closed_at,
            trade_count=self._trade_count,
            large_trade_count=self._large_trade_count,
            taker_buy_quote=self._taker_buy_quote,
            taker_sell_quote=self._taker_sell_quote,
            liquidation_count=self._liquidation_count,
            liquidation_volume=self._liquidation_volume,
            last_price=self._last_price,
            mark_price=self._mark.mark_price if self._mark else None,
            index_price=self._mark.index_price if self._mark else None,
            funding_rate=self._mark.funding_rate if self._mark else None,
            spread=self._book.spread if self._book else None,
            book_imbalance=self._book.imbalance if self._book else None,
            depth_imbalance=self._depth.imbalance if self._depth else None,
            price_change_percent_24h=ticker.price_change_percent if ticker else None,
            quote_volume_24h=ticker.quote_volume if ticker else None,
            open_24h=ticker.open_price if ticker else None,
            high_24h=ticker.high_price if ticker else None,
            low_24h=ticker.low_price if ticker else None,
            indicators=dict(indicators) if indicators is not None else None,
        )
        self._reset_period()
        return snapshot

    def _reset_period(self) -> None:
        self._window_start = None
        self._trade_count = 0
        self._large_trade_count = 0
        self._taker_buy_quote = 0.0
        self._taker_sell_quote = 0.0
        self._liquidation_count = 0
        self._liquidation_volume = 0.0
