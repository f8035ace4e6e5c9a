from __future__ import annotations

from datetime import date
from typing import Any

import httpx
import pytest

from gapsync.core.data.providers import YahooChartProvider, parse_chart_payload
from gapsync.core.exceptions import ErrorCode, UpstreamError

# 09:30 New York time on 2024-01-02, 2024-01-03 and 2024-01-04.
TIMESTAMPS = [1704205800, 1704292200, 1704378600]


def _payload(**overrides: Any) -> dict[str, Any]:
    quote = {
        "open": [187.15, 184.22, None],
        "high": [188.44, 185.88, 183.09],
        "low": [183.89, 183.43, 180.88],
        "close": [185.64, 184.25, 181.91],
        "volume": [82488700, 58414500, 71983600],
    }
    quote.update(overrides.pop("quote", {}))
    result = {
        "meta": {"symbol": "AAPL", "gmtoffset": -18000},
        "timestamp": TIMESTAMPS,
        "indicators": {"quote": [quote], "adjclose": [{"adjclose": [184.9, None, 181.2]}]},
    }
    result.update(overrides)
    return {"chart": {"result": [result], "error": None}}


def _provider(handler) -> YahooChartProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://query1.finance.yahoo.com")
    return YahooChartProvider(client=client)


def test_parse_applies_offset_and_skips_incomplete_bars() -> None:
    records = parse_chart_payload(_payload(), "AAPL", date(2024, 1, 1), date(2024, 1, 31))

    assert [record.date for record in records] == [date(2024, 1, 3), date(2024, 1, 2)]
    newest, oldest = records
    assert oldest.open == 187.15
    assert oldest.adjusted_close == 184.9
    assert oldest.volume == 82488700
    # Missing adjusted close falls back to the close.
    assert newest.adjusted_close == newest.close == 184.25


def test_parse_filters_requested_range() -> None:
    records = parse_chart_payload(_payload(), "AAPL", date(2024, 1, 3), date(2024, 1, 3))

    assert [record.date for record in records] == [date(2024, 1, 3)]


def test_parse_drops_non_positive_prices() -> None:
    payload = _payload(quote={"low": [0.0, 183.43, 180.88]})

    records = parse_chart_payload(payload, "AAPL", date(2024, 1, 1), date(2024, 1, 31))

    assert [record.date for record in records] == [date(2024, 1, 3)]


def test_parse_without_timestamps_is_empty() -> None:
    assert parse_chart_payload(_payload(timestamp=None), "AAPL", date(2024, 1, 1), date(2024, 1, 31)) == []


def test_parse_reports_chart_error() -> None:
    payload = {"chart": {"result": None, "error": {"code": "Not Found", "description": "No data found"}}}

    with pytest.raises(UpstreamError) as exc_info:
        parse_chart_payload(payload, "ZZZZ", date(2024, 1, 1), date(2024, 1, 31))

    assert exc_info.value.error_code == ErrorCode.UPSTREAM_PAYLOAD_ERROR.value
    assert "No data found" in exc_info.value.message


MALFORMED_RESULTS = [
    pytest.param({"timestamp": [None], "indicators": {"quote": [{}]}}, id="null-timestamp"),
    pytest.param({"timestamp": ["soon"], "indicators": {"quote": [{}]}}, id="text-timestamp"),
    pytest.param({"timestamp": TIMESTAMPS, "meta": {"gmtoffset": "EST"}}, id="text-gmtoffset"),
    pytest.param({"timestamp": TIMESTAMPS, "indicators": {"quote": {"close": [1.0]}}}, id="quote-as-mapping"),
    pytest.param({"timestamp": TIMESTAMPS, "indicators": ["quote"]}, id="indicators-as-list"),
    pytest.param(["not", "a", "result"], id="result-as-list"),
]


@pytest.mark.parametrize("result", MALFORMED_RESULTS)
def test_parse_rejects_malformed_result(result: Any) -> None:
    payload = {"chart": {"result": [result], "error": None}}

    with pytest.raises(UpstreamError) as exc_info:
        parse_chart_payload(payload, "AAPL", date(2024, 1, 1), date(2024, 1, 31))

    assert exc_info.value.error_code == ErrorCode.UPSTREAM_PAYLOAD_ERROR.value
    assert "malformed chart payload" in exc_info.value.message


@pytest.mark.asyncio
async def test_fetch_requests_v8_with_epoch_window() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=_payload())

    provider = _provider(handler)
    records = await provider.fetch_daily_bars("AAPL", date(2024, 1, 2), date(2024, 1, 4))
    await provider.close()

    assert len(records) == 2
    assert len(requests) == 1
    request = requests[0]
    assert request.url.path == "/v8/finance/chart/AAPL"
    assert request.url.params["period1"] == "1704153600"
    assert request.url.params["period2"] == "1704412800"
    assert request.url.params["interval"] == "1d"
    assert request.url.params["events"] == "div|split"


@pytest.mark.asyncio
async def test_fetch_falls_back_to_next_endpoint() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        if len(seen) == 1:
            return httpx.Response(500, text="oops")
        if len(seen) == 2:
            return httpx.Response(200, text="<html>not json</html>")
        return httpx.Response(200, json=_payload())

    provider = _provider(handler)
    records = await provider.fetch_daily_bars("AAPL", date(2024, 1, 1), date(2024, 1, 31))

    assert seen == ["/v8/finance/chart/AAPL", "/v8/finance/chart/AAPL", "/v7/finance/chart/AAPL"]
    assert len(records) == 2


@pytest.mark.asyncio
async def test_fetch_skips_endpoint_with_malformed_payload() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        if len(seen) == 1:
            return httpx.Response(200, json={"chart": {"result": [{"timestamp": [None]}], "error": None}})
        return httpx.Response(200, json=_payload())

    provider = _provider(handler)
    records = await provider.fetch_daily_bars("AAPL", date(2024, 1, 1), date(2024, 1, 31))

    assert len(seen) == 2
    assert len(records) == 2


@pytest.mark.asyncio
async def test_fetch_reports_payload_error_when_every_payload_is_malformed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        result = {"timestamp": TIMESTAMPS, "meta": {"gmtoffset": "EST"}}
        return httpx.Response(200, json={"chart": {"result": [result]}})

    provider = _provider(handler)

    with pytest.raises(UpstreamError) as exc_info:
        await provider.fetch_daily_bars("AAPL", date(2024, 1, 1), date(2024, 1, 31))

    assert exc_info.value.error_code == ErrorCode.UPSTREAM_PAYLOAD_ERROR.value
    assert exc_info.value.status_code is None
    assert "all chart endpoints failed" in exc_info.value.message


@pytest.mark.asyncio
async def test_fetch_raises_rate_limited_error_when_all_endpoints_refuse() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="Too Many Requests")

    provider = _provider(handler)

    with pytest.raises(UpstreamError) as exc_info:
        await provider.fetch_daily_bars("AAPL", date(2024, 1, 1), date(2024, 1, 31))

    error = exc_info.value
    assert error.status_code == 429
    assert error.is_rate_limited
    assert error.error_code == ErrorCode.UPSTREAM_HTTP_ERROR.value


@pytest.mark.asyncio
async def test_fetch_wraps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = _provider(handler)

    with pytest.raises(UpstreamError) as exc_info:
        await provider.fetch_daily_bars("AAPL", date(2024, 1, 1), date(2024, 1, 31))

    assert exc_info.value.status_code is None
    assert exc_info.value.details["provider"] == "yahoo"


@pytest.mark.asyncio
async def test_empty_result_is_not_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_payload(timestamp=[]))

    provider = _provider(handler)

    assert await provider.fetch_daily_bars("AAPL", date(2024, 1, 1), date(2024, 1, 31)) == []


@pytest.mark.asyncio
async def test_inverted_range_makes_no_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    provider = _provider(handler)

    assert await provider.fetch_daily_bars("AAPL", date(2024, 1, 5), date(2024, 1, 1)) == []


@pytest.mark.integration
@pytest.mark.asyncio
async def test_live_chart_endpoint_returns_bars() -> None:
    provider = YahooChartProvider()
    try:
        records = await provider.fetch_daily_bars("AAPL", date(2024, 1, 2), date(2024, 1, 12))
    finally:
        await provider.close()

    assert records
    assert all(record.symbol == "AAPL" for record in records)
