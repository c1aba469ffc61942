"""Runtime configuration for cartflow.

All settings come from environment variables so that the API server, the CLI
and tests can point at different data directories without code changes.
"""

import os
from pathlib import Path

# Can be overridden via CARTFLOW_DATA_DIR environment variable
_default_data_dir = Path(__file__).parent.parent.parent / "data"

DEFAULT_POSTAL_CODE_PATTERN = r"^\d{6}$"
DEFAULT_ORDER_PREFIX = "ORD"


def data_dir() -> Path:
    """Root directory for all persisted JSON state."""
    return Path(os.environ.get("CARTFLOW_DATA_DIR", _default_data_dir))


def log_level() -> str:
    return os.environ.get("CARTFLOW_LOG_LEVEL", "info").lower()


def log_format() -> str:
    return os.environ.get("CARTFLOW_LOG_FORMAT", "json").lower()


def postal_code_pattern() -> str:
    return os.environ.get("CARTFLOW_POSTAL_CODE_PATTERN", DEFAULT_POSTAL_CODE_PATTERN)


def order_prefix() -> str:
    return os.environ.get("CARTFLOW_ORDER_PREFIX", DEFAULT_ORDER_PREFIX)
