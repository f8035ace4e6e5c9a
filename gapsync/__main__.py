"""Allow ``python -m gapsync``."""

from gapsync.cli.main import app

if __name__ == "__main__":
    app()
