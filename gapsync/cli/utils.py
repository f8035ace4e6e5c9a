"""Helpers shared across CLI commands."""

from __future__ import annotations

import json
import sys
from collections.abc import Mapping, Sequence
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import TextIO

import typer

from gapsync.core.config import ConfigManager, GapSyncConfig
from gapsync.core.exceptions import ConfigurationError

from .constants import VALIDATION_EXIT_CODE
from .formatters import OutputFormatter, create_formatter


@dataclass(slots=True)
class CLIOptions:
    """Options resolved from the root callback."""

    format: str = "table"
    output_path: Path | None = None
    no_color: bool = False
    config_path: Path | None = None


def get_cli_options(ctx: typer.Context) -> CLIOptions:
    ctx.ensure_object(dict)
    data = ctx.obj or {}
    return CLIOptions(
        format=str(data.get("format", "table")),
        output_path=data.get("output_path"),
        no_color=bool(data.get("no_color", False)),
        config_path=data.get("config_path"),
    )


def load_config(ctx: typer.Context) -> GapSyncConfig:
    """Load the configuration, exiting with a structured error when it is invalid."""

    options = get_cli_options(ctx)
    try:
        return ConfigManager(options.config_path).get_config()
    except ConfigurationError as exc:
        emit_error(exc.message, exc.error_code, details=exc.details)
        raise typer.Exit(code=VALIDATION_EXIT_CODE) from exc


def prepare_output(ctx: typer.Context) -> tuple[OutputFormatter, TextIO, ExitStack]:
    """Resolve the formatter and writable stream for the current command."""

    options = get_cli_options(ctx)
    formatter = create_formatter(options.format, no_color=options.no_color)

    stack = ExitStack()
    stream: TextIO
    if options.output_path is not None:
        try:
            stream = stack.enter_context(open(options.output_path, "w", encoding="utf-8"))
        except OSError as exc:
            stack.close()
            emit_error(f"Unable to open '{options.output_path}': {exc}", "OUTPUT_WRITE_ERROR")
            raise typer.Exit(code=VALIDATION_EXIT_CODE) from exc
    else:
        stream = sys.stdout
    return formatter, stream, stack


def parse_date(value: str, param_hint: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise typer.BadParameter(f"'{value}' is not an ISO date (YYYY-MM-DD)", param_hint=param_hint) from exc


def split_symbols(values: Sequence[str]) -> list[str]:
    """Flatten comma separated symbol arguments, uppercased and de-duplicated."""

    symbols: list[str] = []
    for value in values:
        for item in value.split(","):
            symbol = item.strip().upper()
            if symbol and symbol not in symbols:
                symbols.append(symbol)
    return symbols


def emit_error(message: str, code: str, *, details: Mapping[str, object] | None = None) -> None:
    """Print a structured error payload to stderr."""

    payload: dict[str, object] = {"code": code, "message": message}
    if details:
        payload["details"] = _sanitize_details(details)
    typer.echo(json.dumps(payload, ensure_ascii=False, default=str), err=True)


def _sanitize_details(details: Mapping[str, object]) -> Mapping[str, object]:
    sanitized: dict[str, object] = {}
    for key, value in details.items():
        if isinstance(value, str | int | float | bool) or value is None:
            sanitized[key] = value
        elif isinstance(value, Sequence) and not isinstance(value, str | bytes | bytearray):
            sanitized[key] = [str(item) for item in value]
        else:
            sanitized[key] = str(value)
    return sanitized


__all__ = [
    "CLIOptions",
    "emit_error",
    "get_cli_options",
    "load_config",
    "parse_date",
    "prepare_output",
    "split_symbols",
]
