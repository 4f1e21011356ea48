"""knowledge_rag.config.logging

Logging setup for applications and scripts.

Library modules only create module-level loggers; handlers are attached here,
by the composition root or a CLI entry point.

Functions
---------
configure_logging
    Attach a stream handler to the package logger.
"""

import logging
import sys
from typing import Any, Mapping

PACKAGE_LOGGER = "knowledge_rag"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"

_HANDLER_NAME = "knowledge_rag.stream"


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def configure_logging(level: int | str = "INFO", fmt: str | None = None) -> logging.Logger:
    """Configure the ``knowledge_rag`` logger.

    Calling this more than once updates the level and format of the existing
    handler instead of adding another one.

    Parameters
    ----------
    level : int or str, optional
        Log level name or number. Defaults to ``"INFO"``.
    fmt : str or None, optional
        ``logging.Formatter`` format string.

    Returns
    -------
    logging.Logger
        The package logger.

    Raises
    ------
    ValueError
        If ``level`` is not a known level name.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    handler = next((h for h in logger.handlers if h.get_name() == _HANDLER_NAME), None)
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
        handler.set_name(_HANDLER_NAME)
        logger.addHandler(handler)

    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT, datefmt=DEFAULT_DATEFMT))
    logger.setLevel(_resolve_level(level))

    # Third-party HTTP clients are noisy at INFO.
    for name in ("httpx", "openai", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)
    return logger


def configure_logging_from_config(section: Mapping[str, Any] | None) -> logging.Logger:
    """Configure logging from the ``logging`` configuration section."""
    cfg = dict(section or {})
    return configure_logging(cfg.get("level", "INFO"), cfg.get("format"))


__all__ = ["configure_logging", "configure_logging_from_config", "PACKAGE_LOGGER"]
