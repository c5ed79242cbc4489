"""Market data layer -- value objects parsed from feeds and per-candle aggregation."""

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

__all__ = [
    "AggregationWindow",
    "BookTicker",
    "Candle",
    "DepthUpdate",
    "KlineUpdate",
    "Liquidation",
    "MarkPriceUpdate",
    "MarketSnapshot",
    "Ticker24h",
    "Trade",
]
