"""Shared utilities for kinder: logging and filesystem paths."""

from .logging import configure_logging, get_logger, level_for_verbosity
from .paths import (
    CA_CERT_FILENAME,
    CA_KEY_FILENAME,
    config_dir_for,
    data_dir_for,
    ensure_data_dir,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "level_for_verbosity",
    "CA_CERT_FILENAME",
    "CA_KEY_FILENAME",
    "config_dir_for",
    "data_dir_for",
    "ensure_data_dir",
]
