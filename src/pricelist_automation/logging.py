"""Package logging.

All loggers hang off one ``pricelist`` logger that owns the handlers, so
``get_logger("frontend")`` is a plain child of it and ``configure_logging``
can change the level for the whole package in one place.
"""

import logging
import os
import sys
from typing import Optional, Union


ROOT_LOGGER = "pricelist"
_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _coerce_level(value: Union[str, int, None]) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        name = value.strip().upper()
        if name == "WARN":
            name = "WARNING"
        level = logging.getLevelName(name)
        if isinstance(level, int):
            return level
    return logging.INFO


def configure_logging(level: Union[str, int, None] = None, log_file: Optional[str] = None) -> logging.Logger:
    """(Re)configure the package logger.

    ``level`` and ``log_file`` default to LOG_LEVEL and LOG_FILE. Existing
    handlers are replaced, so calling this again (e.g. from ``serve
    --log-level``) does not duplicate output.
    """
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    resolved = _coerce_level(level if level is not None else os.environ.get("LOG_LEVEL", "INFO"))
    root.setLevel(resolved)
    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(formatter)
    root.addHandler(stream)

    path = log_file if log_file is not None else os.environ.get("LOG_FILE")
    if path:
        try:
            fh = logging.FileHandler(path, encoding="utf-8")
        except OSError:
            root.warning("LOG_FILE %s could not be opened; continuing without file logging", path)
        else:
            fh.setFormatter(formatter)
            root.addHandler(fh)

    root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    """Return the ``pricelist.<name>`` logger, configuring the package on first use."""
    if not logging.getLogger(ROOT_LOGGER).handlers:
        configure_logging()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def preview(text: Optional[str], limit: int = 500) -> str:
    """Shorten model output for log lines."""
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit] + "…"
