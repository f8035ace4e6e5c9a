"""Exit codes shared by CLI commands."""

RUNTIME_EXIT_CODE = 1
VALIDATION_EXIT_CODE = 2

__all__ = ["RUNTIME_EXIT_CODE", "VALIDATION_EXIT_CODE"]
