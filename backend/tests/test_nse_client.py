"""Tests for the NSE client against stubbed HTTP responses."""

import asyncio
import re
from datetime import date

import pytest
from aioresponses import aioresponses

from app.schemas.market import Exchange
from app.services.base import (
    MalformedResponseError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
    ValidationError,
)

QUOTE_URL = re.compile(r"^https://nse\.test/api/quote-equity.*$")
HISTORY_URL = re.compile(r"^https://nse\.test/api/historical/cm/equity.*$")
SEARCH_URL = re.compile(r"^https://nse\.test/api/search/autocomplete.*$")
MOVERS_URL = re.compile(r"^https://nse\.test/api/live-analysis-variations.*$")

RELIANCE = {
    "symbol": "RELIANCE",
    "lastPrice": 2845.50,
    "open": 2810.0,
    "dayHigh": 2850.0,
    "dayLow": 2805.0,
    "previousClose": 2800.0,
    "totalTradedVolume": 1234567,
}


def call_count(mocked: aioresponses) -> int:
    return sum(len(calls) for calls in mocked.requests.values())


async def test_quote_computes_change_from_previous_close(nse_client):
    with aioresponses() as m:
        m.get(QUOTE_URL, payload=RELIANCE)
        quote = await nse_client.get_quote(" reliance ")

    assert quote.symbol == "RELIANCE"
    assert quote.exchange == Exchange.NSE
    assert quote.price == 2845.50
    assert quote.close == 2800.0
    assert quote.change == pytest.approx(45.5)
    assert quote.change_percent == pytest.approx(1.625)
    assert quote.volume == 1234567
    assert quote.currency == "INR"


async def test_quote_keeps_reported_change(nse_client):
    with aioresponses() as m:
        m.get(QUOTE_URL, payload={"data": {**RELIANCE, "change": 40.0, "pChange": 1.4}})
        quote = await nse_client.get_quote("RELIANCE")

    assert quote.change == 40.0
    assert quote.change_percent == 1.4


async def test_quote_zero_previous_close_gives_zero_percent(nse_client):
    with aioresponses() as m:
        m.get(QUOTE_URL, payload={**RELIANCE, "previousClose": 0})
        quote = await nse_client.get_quote("RELIANCE")

    assert quote.change == 2845.50
    assert quote.change_percent == 0.0


async def test_quote_is_cached(nse_client, clock):
    with aioresponses() as m:
        m.get(QUOTE_URL, payload=RELIANCE, repeat=True)
        first = await nse_client.get_quote("RELIANCE")
        second = await nse_client.get_quote("reliance")
        assert call_count(m) == 1

        clock.advance(31)
        await nse_client.get_quote("RELIANCE")
        assert call_count(m) == 2

    assert first == second


async def test_quote_not_found(nse_client):
    with aioresponses() as m:
        m.get(QUOTE_URL, status=404)
        assert await nse_client.get_quote("NOSUCH") is None
        assert call_count(m) == 1


async def test_empty_quote_payload_is_not_found(nse_client):
    with aioresponses() as m:
        m.get(QUOTE_URL, payload={})
        assert await nse_client.get_quote("NOSUCH") is None


async def test_blank_symbol_rejected_without_network(nse_client):
    with aioresponses() as m:
        with pytest.raises(ValidationError):
            await nse_client.get_quote("   ")
        assert call_count(m) == 0


async def test_server_errors_retried_then_reported(nse_client, sleeps):
    with aioresponses() as m:
        m.get(QUOTE_URL, status=503, repeat=True)
        with pytest.raises(UpstreamUnavailableError):
            await nse_client.get_quote("RELIANCE")
        assert call_count(m) == 3

    assert sleeps.delays == [0.5, 1.0]


async def test_rate_limit_then_success(nse_client, sleeps):
    with aioresponses() as m:
        m.get(QUOTE_URL, status=429)
        m.get(QUOTE_URL, payload=RELIANCE)
        quote = await nse_client.get_quote("RELIANCE")

    assert quote.price == 2845.50
    assert sleeps.delays == [0.5]


async def test_timeouts_are_retried(nse_client):
    with aioresponses() as m:
        m.get(QUOTE_URL, exception=asyncio.TimeoutError(), repeat=True)
        with pytest.raises(UpstreamTimeoutError):
            await nse_client.get_quote("RELIANCE")
        assert call_count(m) == 3


async def test_malformed_body_is_not_retried(nse_client):
    with aioresponses() as m:
        m.get(QUOTE_URL, body="<html>Access Denied</html>", repeat=True)
        with pytest.raises(MalformedResponseError):
            await nse_client.get_quote("RELIANCE")
        assert call_count(m) == 1


async def test_undecodable_body_is_malformed(nse_client):
    with aioresponses() as m:
        m.get(QUOTE_URL, body=b'{"symbol": "RELIANCE\xff\xfe"}', repeat=True)
        with pytest.raises(MalformedResponseError):
            await nse_client.get_quote("RELIANCE")
        assert call_count(m) == 1


async def test_payload_missing_price_is_malformed(nse_client):
    with aioresponses() as m:
        m.get(QUOTE_URL, payload={"symbol": "RELIANCE", "open": 1.0})
        with pytest.raises(MalformedResponseError):
            await nse_client.get_quote("RELIANCE")


async def test_historical_bars_sorted_ascending(nse_client):
    rows = [
        {"CH_TIMESTAMP": "2024-01-03", "CH_OPENING_PRICE": 102, "CH_TRADE_HIGH_PRICE": 104,
         "CH_TRADE_LOW_PRICE": 101, "CH_CLOSING_PRICE": 103, "CH_TOT_TRADED_QTY": 300},
        {"CH_TIMESTAMP": "2024-01-01", "CH_OPENING_PRICE": 100, "CH_TRADE_HIGH_PRICE": 102,
         "CH_TRADE_LOW_PRICE": 99, "CH_CLOSING_PRICE": 101, "CH_TOT_TRADED_QTY": 100},
        {"CH_TIMESTAMP": "2024-01-02", "CH_OPENING_PRICE": 101, "CH_TRADE_HIGH_PRICE": 103,
         "CH_TRADE_LOW_PRICE": 100, "CH_CLOSING_PRICE": 102, "CH_TOT_TRADED_QTY": 200},
    ]
    with aioresponses() as m:
        m.get(HISTORY_URL, payload={"data": rows})
        series = await nse_client.get_historical("TCS", date(2024, 1, 1), date(2024, 1, 3))
        ((_, url),) = m.requests.keys()

    assert [bar.date for bar in series.bars] == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]
    assert series.record_count == 3
    assert series.bars[0].adjusted_close == series.bars[0].close
    assert url.query["from"] == "01-01-2024"
    assert url.query["to"] == "03-01-2024"


async def test_historical_invalid_range_makes_no_call(nse_client):
    with aioresponses() as m:
        with pytest.raises(ValidationError):
            await nse_client.get_historical("TCS", date(2024, 2, 1), date(2024, 1, 1))
        assert call_count(m) == 0


async def test_historical_empty_is_not_found(nse_client):
    with aioresponses() as m:
        m.get(HISTORY_URL, payload={"data": []})
        assert await nse_client.get_historical("TCS", date(2024, 1, 1), date(2024, 1, 3)) is None


async def test_search_caps_results(nse_client):
    items = [{"symbol": f"SYM{i}"} for i in range(8)] + [f"RAW{i}" for i in range(6)]
    with aioresponses() as m:
        m.get(SEARCH_URL, payload={"symbols": items})
        symbols = await nse_client.search_symbols("sy")

    assert len(symbols) == 10
    assert symbols[:2] == ["SYM0", "SYM1"]


async def test_blank_search_returns_empty_without_network(nse_client):
    with aioresponses() as m:
        assert await nse_client.search_symbols("  ") == []
        assert call_count(m) == 0


async def test_indices_filtered_to_major(nse_client):
    payload = {
        "data": [
            {"index": "NIFTY 50", "last": 22000.0, "previousClose": 21900.0,
             "variation": 100.0, "percentChange": 0.46},
            {"index": "NIFTY MICROCAP 250", "last": 18000.0},
            {"index": "NIFTY BANK", "last": 48000.0, "previousClose": 48500.0},
        ]
    }
    with aioresponses() as m:
        m.get("https://nse.test/api/allIndices", payload=payload)
        indices = await nse_client.get_indices()

    assert [q.symbol for q in indices] == ["NIFTY 50", "NIFTY BANK"]
    assert indices[0].change == 100.0
    assert indices[1].change == pytest.approx(-500.0)


async def test_top_movers_fetches_both_lists(nse_client):
    gainers = {"data": [{**RELIANCE, "symbol": "tatasteel"}]}
    losers = {"data": [{**RELIANCE, "symbol": "INFY", "lastPrice": 1400.0, "previousClose": 1500.0}]}
    with aioresponses() as m:
        m.get(re.compile(r"^https://nse\.test/api/live-analysis-variations.*type=gainers.*$"), payload=gainers)
        m.get(re.compile(r"^https://nse\.test/api/live-analysis-variations.*type=losers.*$"), payload=losers)
        movers = await nse_client.get_top_movers()
        again = await nse_client.get_top_movers()
        assert call_count(m) == 2

    assert [q.symbol for q in movers.gainers] == ["TATASTEEL"]
    assert [q.symbol for q in movers.losers] == ["INFY"]
    assert movers.losers[0].change == pytest.approx(-100.0)
    assert again == movers


@pytest.mark.parametrize(
    "payload, is_open",
    [
        ({"marketState": [{"market": "Capital Market", "marketStatus": "Open"}]}, True),
        ({"marketState": [{"market": "Currency", "marketStatus": "Open"},
                          {"market": "Capital Market", "marketStatus": "Closed"}]}, False),
        ({"marketState": "open"}, True),
        ({}, False),
    ],
)
async def test_market_status(nse_client, payload, is_open):
    with aioresponses() as m:
        m.get("https://nse.test/api/marketStatus", payload=payload)
        status = await nse_client.get_market_status()

    assert status.is_open is is_open
    assert status.exchange == Exchange.NSE


async def test_cache_keys_are_deterministic(nse_client):
    assert nse_client.cache_key("quote", "RELIANCE") == "nse_quote_RELIANCE"
    assert (
        nse_client.cache_key("historical", "TCS", "20240101", "20240131")
        == "nse_historical_TCS_20240101_20240131"
    )
