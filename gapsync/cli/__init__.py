"""Command line interface for gapsync."""

from gapsync.cli.main import app, create_app

__all__ = ["app", "create_app"]
