"""Logging helpers with UTC timestamps."""

from __future__ import annotations

import logging
import os
import time

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
_HANDLER_NAME = "matchview-root-handler"


def _resolve_level(level: str | int | None) -> int:
    if level is None:
        env_level = os.getenv("LOG_LEVEL", "INFO").upper()
        return getattr(logging, env_level, logging.INFO)
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return int(level)


def setup_logging(
    level: str | int | None = None,
    log_file: str | None = None,
    console: bool = True,
) -> logging.Logger:
    """
    Configure the shared root handler.

    With console=False (TUI owns the terminal) records go to log_file only,
    or nowhere if no file is given.
    """
    root = logging.getLogger()
    resolved_level = _resolve_level(level)

    for handler in root.handlers[:]:
        if getattr(handler, "name", "") == _HANDLER_NAME:
            root.removeHandler(handler)
            handler.close()

    handler: logging.Handler | None = None
    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
    elif console:
        handler = logging.StreamHandler()

    if handler is not None:
        handler.name = _HANDLER_NAME
        formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
        formatter.converter = time.gmtime  # Force UTC timestamps
        handler.setFormatter(formatter)
        handler.setLevel(resolved_level)
        root.addHandler(handler)
    else:
        root.addHandler(_null_handler())

    root.setLevel(resolved_level)
    return root


def _null_handler() -> logging.Handler:
    handler = logging.NullHandler()
    handler.name = _HANDLER_NAME
    return handler


def get_logger(name: str) -> logging.Logger:
    """Return a module logger. Handlers are attached by setup_logging()."""
    return logging.getLogger(name)
