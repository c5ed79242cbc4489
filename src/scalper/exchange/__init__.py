"""Exchange REST access (historical warm-up only)."""

from scalper.exchange.binance_client import BinanceKlineClient

__all__ = ["BinanceKlineClient"]
