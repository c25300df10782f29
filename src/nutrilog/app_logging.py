"""Logging configuration helpers."""

import logging

# Libraries that log every request or heartbeat at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "realtime", "websockets")


def configure_logging(level: str | int = logging.INFO) -> None:
    """Configure package logging with a single stream handler.

    Repeated calls only update the level.
    """
    logger = logging.getLogger("nutrilog")
    logger.setLevel(_resolve_level(level))
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s: %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False


def _resolve_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO
