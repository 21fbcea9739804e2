"""Structured JSON logging for pipetrace."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from typing import IO, Any


_ROOT_LOGGER = "pipetrace"

# Attributes every LogRecord carries; anything else arrived through `extra`.
_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    enum_value = getattr(value, "value", None)
    if isinstance(enum_value, (str, int)):
        return enum_value
    return str(value)


class _JsonLineFormatter(logging.Formatter):
    """Render each record as a single sorted JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            payload[key] = _jsonable(value)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, sort_keys=True)


def configure_logging(
    level: str = "INFO",
    *,
    stream: IO[str] | None = None,
    force: bool = False,
) -> logging.Logger:
    """Install the JSON handler on the `pipetrace` logger once.

    Passing `force=True` replaces any previously installed handler, which the
    CLI uses to honour `--log-level`.
    """

    logger = logging.getLogger(_ROOT_LOGGER)
    if logger.handlers and not force:
        return logger

    for existing in list(logger.handlers):
        logger.removeHandler(existing)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(_JsonLineFormatter())
    logger.addHandler(handler)
    logger.setLevel(level.upper())
    logger.propagate = False
    return logger


def get_logger(name: str = _ROOT_LOGGER) -> logging.Logger:
    """Return a logger below the configured `pipetrace` namespace."""

    configure_logging()
    return logging.getLogger(name)


def log_event(
    logger: logging.Logger,
    event: str,
    *,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    """Emit one structured event line; `fields` become top-level JSON keys."""

    if not logger.isEnabledFor(level):
        return
    logger.log(level, event, extra={"event": event, **fields})
