"""Main entry point for the gapsync command line interface."""

from __future__ import annotations

from pathlib import Path

import typer

from gapsync import app as service_app
from gapsync.core.exceptions import ConfigurationError
from gapsync.core.logging import configure_logging

from .analysis import register as register_analysis_commands
from .constants import VALIDATION_EXIT_CODE
from .control import register as register_control_commands
from .formatters import create_formatter
from .utils import emit_error, load_config


def create_app() -> typer.Typer:
    """Create a Typer application instance for gapsync."""

    app = typer.Typer(add_completion=False, help="gapsync command line interface")

    @app.callback()
    def main(
        ctx: typer.Context,
        format: str = typer.Option(
            "table",
            "--format",
            "-f",
            help="Output format (table or jsonl).",
            show_default=True,
        ),
        output: Path | None = typer.Option(
            None,
            "--output",
            "-o",
            help="Write output to a file instead of stdout.",
        ),
        config: Path | None = typer.Option(
            None,
            "--config",
            "-c",
            help="TOML configuration file (defaults to ~/.gapsync/config.toml).",
        ),
        log_level: str | None = typer.Option(
            None,
            "--log-level",
            help="Minimum level of the JSON log lines on stderr (WARNING unless running the service).",
        ),
        no_color: bool = typer.Option(
            False,
            "--no-color",
            help="Disable colorized output for table format.",
        ),
    ) -> None:
        ctx.ensure_object(dict)
        normalized_format = format.strip().lower()
        try:
            create_formatter(normalized_format, no_color=no_color)
        except ValueError as exc:
            raise typer.BadParameter(str(exc), param_hint="--format") from exc

        ctx.obj.update(
            {
                "format": normalized_format,
                "output_path": output,
                "config_path": config,
                "log_level": log_level.upper() if log_level else None,
                "no_color": no_color,
            }
        )
        configure_logging(log_level.upper() if log_level else "WARNING")

    @app.command("run")
    def run_command(
        ctx: typer.Context,
        no_auto_start: bool = typer.Option(
            False,
            "--no-auto-start",
            help="Only poll for remote commands; wait for START_SYNC before syncing.",
        ),
    ) -> None:
        """Host the sync service until interrupted."""

        settings = load_config(ctx)
        if no_auto_start:
            settings.sync.auto_start = False
        try:
            settings.validate()
        except ConfigurationError as exc:
            emit_error(exc.message, exc.error_code, details=exc.details)
            raise typer.Exit(code=VALIDATION_EXIT_CODE) from exc

        configure_logging(
            ctx.obj.get("log_level") or settings.logging.level,
            file_output=settings.logging.file is not None,
            file_path=settings.logging.file,
        )
        service_app.run_forever(settings)

    register_analysis_commands(app)
    register_control_commands(app)
    return app


app = create_app()


__all__ = ["app", "create_app"]
