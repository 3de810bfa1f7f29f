"""Logging setup for gateci internals (user-facing output goes through ui.console)."""

from __future__ import annotations

import logging
import sys
import threading

_lock = threading.Lock()
_setup_done = False


class _Formatter(logging.Formatter):
    """Format records as ``[tag] message`` with the ``gateci.`` prefix stripped."""

    def format(self, record: logging.LogRecord) -> str:
        name = record.name
        if name.startswith("gateci."):
            name = name[len("gateci."):]
        record.msg = f"[{name}] {record.msg}"
        return super().format(record)


def setup_logging(verbose: bool = False) -> None:
    """Configure the ``gateci`` logger once; later calls only adjust the level."""
    global _setup_done
    with _lock:
        logger = logging.getLogger("gateci")
        logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
        if _setup_done:
            return
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_Formatter())
        logger.addHandler(handler)
        logger.propagate = False
        _setup_done = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"gateci.{name}")
