"""Tests for market data value objects.

Covers both candle encodings (REST array and named-field object), string
numerics, invariant checks and the stream event parsers.
"""

import pytest

from scalper.exceptions import MalformedMessageError
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

REST_ROW = [
    1_700_000_000_000,
    "100.50",
    "101.00",
    "100.00",
    "100.80",
    "12.5",
    1_700_000_059_999,
    "1260.0",
    42,
    "6.0",
    "604.8",
    "0",
]


class TestCandle:
    def test_from_array_parses_string_numerics(self) -> None:
        candle = Candle.from_source(REST_ROW)

        assert candle.open_time == 1_700_000_000_000
        assert candle.close_time == 1_700_000_059_999
        assert candle.open == 100.5
        assert candle.high == 101.0
        assert candle.low == 100.0
        assert candle.close == 100.8
        assert candle.volume == 12.5
        assert candle.trade_count == 42
        assert candle.taker_buy_quote_volume == 604.8

    def test_from_object_matches_array_form(self) -> None:
        keys = (
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
        obj = dict(zip(keys, REST_ROW))

        assert Candle.from_source(obj) == Candle.from_source(REST_ROW)

    def test_short_array_rejected(self) -> None:
        with pytest.raises(MalformedMessageError, match="11 slots"):
            Candle.from_source(REST_ROW[:6])

    def test_missing_field_rejected(self) -> None:
        obj = {"openTime": 1, "open": "1", "high": "1", "low": "1"}
        with pytest.raises(MalformedMessageError, match="missing required field"):
            Candle.from_source(obj)

    def test_non_numeric_value_rejected(self) -> None:
        row = list(REST_ROW)
        row[4] = "not-a-price"
        with pytest.raises(MalformedMessageError, match="close"):
            Candle.from_source(row)

    def test_nan_price_rejected(self) -> None:
        row = list(REST_ROW)
        row[2] = "NaN"
        with pytest.raises(MalformedMessageError, match="non-finite value for high"):
            Candle.from_source(row)

    @pytest.mark.parametrize("token", ["inf", "-Infinity"])
    def test_infinite_price_rejected(self, token: str) -> None:
        row = list(REST_ROW)
        row[4] = token
        with pytest.raises(MalformedMessageError, match="close"):
            Candle.from_source(row)

    def test_direct_construction_rejects_nan(self) -> None:
        with pytest.raises(MalformedMessageError, match="not finite"):
            Candle(open_time=0, open=10, high=12, low=9, close=11, volume=float("nan"), close_time=59_999)

    def test_malformed_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            Candle.from_source("100,101,99")

    def test_high_below_close_rejected(self) -> None:
        with pytest.raises(MalformedMessageError, match="high"):
            Candle(open_time=0, open=10, high=10.5, low=9, close=11, volume=1, close_time=59_999)

    def test_low_above_open_rejected(self) -> None:
        with pytest.raises(MalformedMessageError, match="low"):
            Candle(open_time=0, open=10, high=12, low=10.5, close=11, volume=1, close_time=59_999)

    def test_close_time_must_follow_open_time(self) -> None:
        with pytest.raises(MalformedMessageError, match="close_time"):
            Candle(open_time=60_000, open=10, high=12, low=9, close=11, volume=1, close_time=60_000)

    def test_derived_properties(self) -> None:
        candle = Candle.from_source(REST_ROW)

        assert candle.range == pytest.approx(1.0)
        assert candle.body == pytest.approx(0.3)
        assert candle.is_bullish
        assert not candle.is_bearish
        assert candle.open_datetime.year == 2023
        assert candle.to_dict()["close"] == 100.8

    def test_candle_is_immutable(self) -> None:
        candle = Candle.from_source(REST_ROW)
        with pytest.raises(AttributeError):
            candle.close = 1.0  # type: ignore[misc]


class TestStreamEvents:
    def test_kline_update(self, make_candle, kline_payload) -> None:
        candle = make_candle(3, 100.0, 102.0, 99.0, 101.0)
        update = KlineUpdate.from_event(kline_payload(candle, closed=False))

        assert update.symbol == "BTCUSDT"
        assert update.interval == "1m"
        assert update.is_closed is False
        assert update.candle == candle

    def test_kline_without_close_price_rejected(self, make_candle, kline_payload) -> None:
        event = kline_payload(make_candle(0, 100.0, 102.0, 99.0, 101.0))
        del event["k"]["c"]

        with pytest.raises(MalformedMessageError, match="'c'"):
            KlineUpdate.from_event(event)

    def test_agg_trade(self, agg_trade_payload) -> None:
        trade = Trade.from_agg_trade_event(agg_trade_payload(price=50.0, quantity=2.0, buyer_maker=True, trade_id=9))

        assert trade.id == 9
        assert trade.notional == pytest.approx(100.0)
        assert trade.is_sell
        assert not trade.is_buy
        assert trade.traded_at.year == 2023

    def test_raw_trade_uses_trade_id(self) -> None:
        trade = Trade.from_trade_event(
            {"e": "trade", "s": "BTCUSDT", "t": 77, "p": "10", "q": "0.5", "T": 1, "m": False}
        )

        assert trade.id == 77
        assert trade.is_buy

    def test_string_buyer_maker_flag_parsed_strictly(self) -> None:
        event = {"e": "trade", "s": "BTCUSDT", "t": 1, "p": "10", "q": "1", "T": 1}

        assert Trade.from_trade_event({**event, "m": "false"}).is_buy
        assert Trade.from_trade_event({**event, "m": "TRUE"}).is_sell

    @pytest.mark.parametrize("flag", ["no", 1, 0, None, "0"])
    def test_ambiguous_buyer_maker_flag_rejected(self, agg_trade_payload, flag) -> None:
        event = agg_trade_payload(price=50.0, quantity=2.0, buyer_maker=True, trade_id=9)
        event["m"] = flag

        with pytest.raises(MalformedMessageError, match="invalid boolean value for m"):
            Trade.from_agg_trade_event(event)

    def test_kline_closed_flag_must_be_boolean(self, make_candle, kline_payload) -> None:
        event = kline_payload(make_candle(0, 100.0, 102.0, 99.0, 101.0))
        event["k"]["x"] = "yes"

        with pytest.raises(MalformedMessageError, match="invalid boolean value for x"):
            KlineUpdate.from_event(event)

    def test_mark_price(self) -> None:
        update = MarkPriceUpdate.from_event(
            {"e": "markPriceUpdate", "E": 5, "s": "BTCUSDT", "p": "100.5", "i": "100.0", "r": "0.0001", "T": 8}
        )

        assert update.basis == pytest.approx(0.5)
        assert update.funding_rate == pytest.approx(0.0001)
        assert update.next_funding_time == 8

    def test_liquidation(self) -> None:
        liquidation = Liquidation.from_event(
            {
                "e": "forceOrder",
                "E": 1,
                "o": {"s": "BTCUSDT", "S": "SELL", "p": "99", "ap": "100", "q": "2", "z": "1.5", "X": "FILLED", "T": 3},
            }
        )

        assert liquidation.side == "SELL"
        assert liquidation.notional == pytest.approx(150.0)

    def test_book_ticker(self) -> None:
        ticker = BookTicker.from_event({"s": "BTCUSDT", "u": 1, "b": "99", "B": "3", "a": "101", "A": "1"})

        assert ticker.spread == pytest.approx(2.0)
        assert ticker.mid_price == pytest.approx(100.0)
        assert ticker.imbalance == pytest.approx(0.5)

    def test_depth_accepts_both_encodings(self) -> None:
        futures = DepthUpdate.from_event({"u": 5, "b": [["99", "1"]], "a": [["101", "3"]]})
        spot = DepthUpdate.from_event({"lastUpdateId": 5, "bids": [["99", "1"]], "asks": [["101", "3"]]})

        assert futures == spot
        assert futures.imbalance == pytest.approx(-0.5)

    def test_depth_without_levels_rejected(self) -> None:
        with pytest.raises(MalformedMessageError):
            DepthUpdate.from_event({"u": 5})

    def test_ticker_24h(self) -> None:
        ticker = Ticker24h.from_event(
            {
                "e": "24hrTicker", "E": 9, "s": "BTCUSDT", "p": "3.0", "P": "3.09",
                "o": "97.0", "h": "101.0", "l": "96.0", "c": "100.0", "v": "20", "q": "2000",
            }
        )

        assert ticker.price_change_percent == pytest.approx(3.09)
        assert ticker.quote_volume == 2000.0
        assert ticker.range_position == pytest.approx(0.8)

    def test_ticker_without_volume_rejected(self) -> None:
        with pytest.raises(MalformedMessageError, match="'q'"):
            Ticker24h.from_event({"s": "BTCUSDT", "E": 1, "p": "0", "P": "0", "o": "1", "h": "1", "l": "1", "c": "1", "v": "1"})
