"""Upstream market data providers."""

from gapsync.core.data.providers.yahoo import YahooChartProvider, parse_chart_payload

__all__ = ["YahooChartProvider", "parse_chart_payload"]
