"""Configuration system using pydantic-settings with environment variable loading.

Invalid numeric ranges are rejected when a settings object is constructed,
so a misconfigured strategy or stream never starts.
"""

from typing import Literal, Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SPOT_STREAM_URL = "wss://stream.binance.com:9443"
FUTURES_STREAM_URL = "wss://fstream.binance.com"


class StreamSettings(BaseSettings):
    """Connection manager defaults applied to every logical stream."""

    model_config = SettingsConfigDict(env_prefix="STREAM_")

    base_url: str = FUTURES_STREAM_URL
    auto_reconnect: bool = True
    connection_timeout_ms: int = Field(default=10_000, gt=0)
    heartbeat_interval_ms: int = Field(default=30_000, ge=0)  # 0 disables pings
    max_reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_base_delay_ms: int = Field(default=1_000, gt=0)
    reconnect_max_delay_ms: int = Field(default=30_000, gt=0)
    close_timeout_seconds: float = Field(default=5.0, gt=0)

    @model_validator(mode="after")
    def _check_delays(self) -> Self:
        if self.reconnect_max_delay_ms < self.reconnect_base_delay_ms:
            raise ValueError(
                "reconnect_max_delay_ms must be >= reconnect_base_delay_ms "
                f"(got {self.reconnect_max_delay_ms} < {self.reconnect_base_delay_ms})"
            )
        return self


class FeedSettings(BaseSettings):
    """Which symbol and topics the live feed subscribes to."""

    model_config = SettingsConfigDict(env_prefix="FEED_")

    symbol: str = "BTCUSDT"
    interval: str = "1m"
    include_trades: bool = True  # aggTrade
    include_mark_price: bool = True  # markPrice@1s (funding, basis)
    include_liquidations: bool = True  # forceOrder
    include_book_ticker: bool = True
    include_ticker: bool = True  # 24h rolling statistics
    include_depth: bool = False  # depth5@100ms
    large_trade_notional: float = Field(default=10_000.0, gt=0)

    def topics(self) -> list[str]:
        """Return the combined-stream topic names for this feed.

        The kline topic is always first.
        """
        sym = self.symbol.lower()
        topics = [f"{sym}@kline_{self.interval}"]
        if self.include_trades:
            topics.append(f"{sym}@aggTrade")
        if self.include_mark_price:
            topics.append(f"{sym}@markPrice@1s")
        if self.include_liquidations:
            topics.append(f"{sym}@forceOrder")
        if self.include_ticker:
            topics.append(f"{sym}@ticker")
        if self.include_book_ticker:
            topics.append(f"{sym}@bookTicker")
        if self.include_depth:
            topics.append(f"{sym}@depth5@100ms")
        return topics


class HistorySettings(BaseSettings):
    """Historical kline warm-up configuration.

    The warm-up primes the indicators before the live feed starts so that
    decisions are possible from the first streamed candle.
    """

    model_config = SettingsConfigDict(env_prefix="HISTORY_")

    enabled: bool = True
    market: Literal["spot", "futures"] = "futures"
    warmup_candles: int = Field(default=300, gt=0, le=1500)
    max_retries: int = Field(default=5, gt=0)
    retry_base_delay: float = Field(default=1.0, ge=0)


class StrategySettings(BaseSettings):
    """Pullback scalping strategy parameters.

    Periods drive the indicator windows, multipliers are expressed in units
    of the volatility range (ATR) and sizes in base-asset units.
    """

    model_config = SettingsConfigDict(env_prefix="STRATEGY_")

    # Moving averages
    fast_period: int = Field(default=9, gt=0)
    slow_period: int = Field(default=21, gt=0)
    trend_period: int = Field(default=50, gt=0)

    # Volatility range
    volatility_period: int = Field(default=14, gt=0)
    volatility_smoothing: Literal["wilder", "ema", "sma"] = "wilder"
    atr_stop_multiplier: float = Field(default=1.2, gt=0)
    atr_take_profit_multiplier: float = Field(default=1.8, gt=0)

    # Oscillators
    oscillator_period: int = Field(default=14, gt=0)
    stochastic_period: int = Field(default=14, gt=0)
    stochastic_signal_period: int = Field(default=3, gt=0)
    oscillator_overbought: float = Field(default=75.0, ge=0, le=100)
    oscillator_oversold: float = Field(default=25.0, ge=0, le=100)
    early_exit_overbought: float = Field(default=80.0, ge=0, le=100)
    early_exit_oversold: float = Field(default=20.0, ge=0, le=100)

    # Adaptive sizing
    base_position_size: float = Field(default=1.0, gt=0)
    max_position_size: float | None = Field(default=None, gt=0)  # None -> 3x base
    min_position_size: float = Field(default=0.1, gt=0)
    volatility_adjustment: bool = True

    # Market filters
    min_volatility: float = Field(default=0.0, ge=0)
    max_volatility: float | None = Field(default=None, gt=0)
    trend_strength_threshold: float = Field(default=0.3, ge=0)

    # Entry rules
    require_momentum_confirmation: bool = False
    volume_weighted: bool = False
    allow_shallow_pullbacks: bool = True
    shallow_confidence_factor: float = Field(default=0.8, gt=0, le=1)
    min_risk_reward_ratio: float = Field(default=1.2, ge=0)

    # Exit rules
    early_exit_enabled: bool = True
    max_trade_duration_bars: int | None = Field(default=None, gt=0)
    max_trade_duration_ms: int | None = Field(default=120 * 60 * 1000, gt=0)
    trailing_stop_enabled: bool = False
    trailing_stop_multiplier: float | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_ranges(self) -> Self:
        if not self.fast_period < self.slow_period < self.trend_period:
            raise ValueError(
                "periods must satisfy fast_period < slow_period < trend_period "
                f"(got {self.fast_period}, {self.slow_period}, {self.trend_period})"
            )
        if self.oscillator_oversold >= self.oscillator_overbought:
            raise ValueError(
                "oscillator_oversold must be below oscillator_overbought "
                f"(got {self.oscillator_oversold} >= {self.oscillator_overbought})"
            )
        if self.early_exit_oversold >= self.early_exit_overbought:
            raise ValueError(
                "early_exit_oversold must be below early_exit_overbought "
                f"(got {self.early_exit_oversold} >= {self.early_exit_overbought})"
            )
        if self.min_position_size > self.base_position_size:
            raise ValueError(
                "min_position_size must not exceed base_position_size "
                f"(got {self.min_position_size} > {self.base_position_size})"
            )
        if (
            self.max_position_size is not None
            and self.max_position_size < self.base_position_size
        ):
            raise ValueError(
                "max_position_size must be >= base_position_size "
                f"(got {self.max_position_size} < {self.base_position_size})"
            )
        if self.max_volatility is not None and self.max_volatility <= self.min_volatility:
            raise ValueError(
                "max_volatility must be greater than min_volatility "
                f"(got {self.max_volatility} <= {self.min_volatility})"
            )
        return self

    @property
    def effective_max_position_size(self) -> float:
        """Upper size clamp; defaults to three times the base size."""
        if self.max_position_size is not None:
            return self.max_position_size
        return self.base_position_size * 3

    @property
    def effective_trailing_multiplier(self) -> float:
        """ATR multiple used by the trailing stop."""
        if self.trailing_stop_multiplier is not None:
            return self.trailing_stop_multiplier
        return self.atr_stop_multiplier


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "console"
    stream: StreamSettings = StreamSettings()
    feed: FeedSettings = FeedSettings()
    history: HistorySettings = HistorySettings()
    strategy: StrategySettings = StrategySettings()
