"""
Yahoo Finance chart API client.

Daily bars are requested from the public chart endpoints. The v8 endpoint is
tried first, with and without event data, and the v7 endpoint last; the first
endpoint returning a parsable payload wins.
"""

from __future__ import annotations

import math
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

import httpx

from gapsync.core.exceptions import ErrorCode, UpstreamError
from gapsync.core.interfaces import MarketDataProvider
from gapsync.core.logging import get_logger
from gapsync.core.models import DataRecord

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://query1.finance.yahoo.com"
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; gapsync/0.1)"


def _epoch(day: date) -> int:
    return int(datetime.combine(day, time.min, tzinfo=UTC).timestamp())


def _price(values: list[Any], index: int) -> float | None:
    if index >= len(values):
        return None
    value = values[index]
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _volume(values: list[Any], index: int) -> int:
    if index >= len(values) or values[index] is None:
        return 0
    try:
        return int(values[index])
    except (TypeError, ValueError):
        return 0


def parse_chart_payload(
    payload: dict[str, Any],
    symbol: str,
    from_date: date,
    to_date: date,
    provider_name: str = "yahoo",
) -> list[DataRecord]:
    """Convert a chart API payload into records, newest first.

    Rows outside ``[from_date, to_date]`` or with a non-positive price are
    dropped. A missing adjusted close falls back to the close.

    Raises:
        UpstreamError: if the payload reports an error, has no result or is
            not shaped like a chart response
    """

    chart = payload.get("chart") if isinstance(payload, dict) else None
    results = chart.get("result") if isinstance(chart, dict) else None
    if not results:
        error = chart.get("error") if isinstance(chart, dict) else None
        message = f"chart API error for {symbol}: {error}" if error else f"no chart result for {symbol}"
        raise UpstreamError(message, provider_name, error_code=ErrorCode.UPSTREAM_PAYLOAD_ERROR)

    try:
        return _parse_result(results[0], symbol, from_date, to_date)
    except (TypeError, ValueError, KeyError, IndexError, AttributeError, OverflowError, OSError) as exc:
        raise UpstreamError(
            f"malformed chart payload for {symbol}: {exc}",
            provider_name,
            error_code=ErrorCode.UPSTREAM_PAYLOAD_ERROR,
        ) from exc


def _parse_result(result: dict[str, Any], symbol: str, from_date: date, to_date: date) -> list[DataRecord]:
    result = result or {}
    timestamps = result.get("timestamp")
    if not timestamps:
        return []

    indicators = result.get("indicators") or {}
    quotes = (indicators.get("quote") or [{}])[0] or {}
    adjclose = ((indicators.get("adjclose") or [{}])[0] or {}).get("adjclose") or []
    offset = int((result.get("meta") or {}).get("gmtoffset") or 0)

    opens = quotes.get("open") or []
    highs = quotes.get("high") or []
    lows = quotes.get("low") or []
    closes = quotes.get("close") or []
    volumes = quotes.get("volume") or []

    records: dict[date, DataRecord] = {}
    for index, stamp in enumerate(timestamps):
        day = datetime.fromtimestamp(int(stamp) + offset, tz=UTC).date()
        if not from_date <= day <= to_date:
            continue
        open_, high, low, close = (_price(values, index) for values in (opens, highs, lows, closes))
        if open_ is None or high is None or low is None or close is None:
            continue
        record = DataRecord(
            symbol=symbol,
            date=day,
            open=open_,
            high=high,
            low=low,
            close=close,
            adjusted_close=_price(adjclose, index) or close,
            volume=_volume(volumes, index),
        )
        if record.is_valid:
            records[day] = record
        else:
            logger.debug(f"{symbol}: dropping invalid bar on {day.isoformat()}")

    return sorted(records.values(), key=lambda record: record.date, reverse=True)


class YahooChartProvider(MarketDataProvider):
    """Market data provider backed by the Yahoo chart endpoints."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        name: str = "yahoo",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._user_agent = user_agent
        self._name = name
        self._client = client

    @property
    def name(self) -> str:
        return self._name

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                headers={"User-Agent": self._user_agent, "Accept": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _endpoints(symbol: str, from_date: date, to_date: date) -> list[tuple[str, dict[str, Any]]]:
        window = {
            "period1": _epoch(from_date),
            "period2": _epoch(to_date + timedelta(days=1)),
            "interval": "1d",
        }
        return [
            (f"/v8/finance/chart/{symbol}", {**window, "includePrePost": "true", "events": "div|split"}),
            (f"/v8/finance/chart/{symbol}", window),
            (f"/v7/finance/chart/{symbol}", window),
        ]

    async def _fetch_endpoint(
        self,
        client: httpx.AsyncClient,
        path: str,
        params: dict[str, Any],
        symbol: str,
        from_date: date,
        to_date: date,
    ) -> list[DataRecord]:
        try:
            response = await client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"request to {path} failed: {exc}", self._name) from exc

        if response.status_code >= 400:
            raise UpstreamError(
                f"HTTP {response.status_code} from {path}",
                self._name,
                status_code=response.status_code,
                error_code=ErrorCode.UPSTREAM_HTTP_ERROR,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(
                f"invalid JSON from {path}", self._name, error_code=ErrorCode.UPSTREAM_PAYLOAD_ERROR
            ) from exc

        return parse_chart_payload(payload, symbol, from_date, to_date, self._name)

    async def fetch_daily_bars(self, symbol: str, from_date: date, to_date: date) -> list[DataRecord]:
        if to_date < from_date:
            return []

        client = self._ensure_client()
        failures: list[UpstreamError] = []
        for path, params in self._endpoints(symbol, from_date, to_date):
            try:
                records = await self._fetch_endpoint(client, path, params, symbol, from_date, to_date)
            except UpstreamError as exc:
                failures.append(exc)
                logger.warning(f"{symbol}: {exc.message}")
                continue
            logger.debug(f"{symbol}: {len(records)} bars from {path}")
            return records

        last = failures[-1]
        raise UpstreamError(
            f"all chart endpoints failed for {symbol}: {last.message}",
            self._name,
            status_code=last.status_code,
            error_code=last.error_code,
        )


__all__ = ["DEFAULT_BASE_URL", "YahooChartProvider", "parse_chart_payload"]
