"""Logging entry points for the marketplace service."""

from __future__ import annotations

import logging

from service_commons.logging import get_named_logger
from service_commons.logging import setup_logging as setup_service_logging

_root_logger_name: dict[str, str] = {"name": "marketplace"}


def setup_logging(level: str, service_name: str, log_directory: str) -> logging.Logger:
    """Configure JSON logging with service_name as the root logger."""
    _root_logger_name["name"] = service_name
    return setup_service_logging(level, service_name, log_directory)


def get_logger(name: str) -> logging.Logger:
    """Get a module logger under the service root logger."""
    return get_named_logger(_root_logger_name["name"], name)
