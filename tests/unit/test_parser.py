"""
Unit tests for the Poloniex candle parser.
"""

import math

import pytest

from kline_backfill.core.errors import ParseError
from kline_backfill.exchanges.poloniex import PoloniexKlineParser


@pytest.fixture
def parser():
    return PoloniexKlineParser()


@pytest.fixture
def sample_row():
    return ["100", "110", "105", "108", "1000", "900", "400", "350",
            0, 0, "", "1h", 1704067200000, 1704070799999]


def test_parse_maps_positional_fields(parser, sample_row):
    (k,) = parser.parse("BTC_USDT", "HOUR_1", [sample_row])

    assert k.pair == "BTC_USDT"
    assert k.timeframe == "1h"
    assert (k.open, k.high, k.low, k.close) == (105.0, 110.0, 100.0, 108.0)
    assert k.period_start_utc == 1704067200000
    assert k.volume.buy_base == 350.0
    assert k.volume.sell_base == 550.0
    assert k.volume.buy_quote == 400.0
    assert k.volume.sell_quote == 600.0


def test_volume_split_sums_to_totals(parser):
    rows = [
        ["1.5", "2.5", "2", "2.1", "1234.56", "600.25", "234.56", "100.125",
         7, 0, "2.05", "5m", 1704067200000 + i * 300000, 1704067499999 + i * 300000]
        for i in range(5)
    ]
    klines = parser.parse("ETH_USDT", "MINUTE_5", rows)

    assert len(klines) == 5
    for k in klines:
        assert k.timeframe == "5m"
        assert math.isclose(k.volume.buy_base + k.volume.sell_base, 600.25)
        assert math.isclose(k.volume.buy_quote + k.volume.sell_quote, 1234.56)
        assert k.volume.sell_base >= 0 and k.volume.sell_quote >= 0


def test_numeric_fields_may_be_numbers(parser):
    row = [100, 110, 105.5, 108, 1000, 900, 400, 350, 3, 0, 0, "1d", 1704067200000, 1704153599999]
    (k,) = parser.parse("BTC_USDT", "DAY_1", [row])
    assert k.open == 105.5
    assert k.timeframe == "1d"


def test_string_timestamp_is_accepted(parser, sample_row):
    sample_row[12] = "1704067200000"
    (k,) = parser.parse("BTC_USDT", "HOUR_1", [sample_row])
    assert k.period_start_utc == 1704067200000


def test_empty_payload_yields_nothing(parser):
    assert parser.parse("BTC_USDT", "HOUR_1", []) == []


def test_negative_sell_volume_is_parse_error(parser, sample_row):
    # buy taker base larger than total base
    sample_row[7] = "901"
    with pytest.raises(ParseError):
        parser.parse("BTC_USDT", "HOUR_1", [sample_row])


def test_negative_sell_quote_is_parse_error(parser, sample_row):
    sample_row[6] = "1000.01"
    with pytest.raises(ParseError):
        parser.parse("BTC_USDT", "HOUR_1", [sample_row])


@pytest.mark.parametrize("pos, value", [(0, "abc"), (3, None), (5, "nan"), (12, "not-a-ts"), (12, 1.5), (2, True)])
def test_bad_field_is_parse_error(parser, sample_row, pos, value):
    sample_row[pos] = value
    with pytest.raises(ParseError):
        parser.parse("BTC_USDT", "HOUR_1", [sample_row])


def test_wrong_field_count_is_parse_error(parser, sample_row):
    with pytest.raises(ParseError) as exc_info:
        parser.parse("BTC_USDT", "HOUR_1", [sample_row, sample_row[:13]])
    assert exc_info.value.row_index == 1


def test_row_that_is_not_a_list_is_parse_error(parser):
    with pytest.raises(ParseError):
        parser.parse("BTC_USDT", "HOUR_1", [{"low": "1"}])


def test_timeframe_comes_from_interval_not_payload(parser, sample_row):
    sample_row[11] = "5m"
    (k,) = parser.parse("BTC_USDT", "HOUR_1", [sample_row])
    assert k.timeframe == "1h"
