from __future__ import annotations

import logging
import re
import sys
from collections.abc import Mapping
from typing import IO, Any

LOG_LEVEL_CHOICES = ("critical", "error", "warning", "info", "debug")

# Fields every relay log line carries, with the value used when a call site omits one.
RELAY_LOG_FIELDS: tuple[tuple[str, Any], ...] = (
    ("chat_id", "-"),
    ("component", "-"),
    ("operation", "-"),
    ("result", "-"),
    ("duration_ms", 0),
    ("error_class", "-"),
)
RELAY_LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s: "
    + " ".join(f"{name}=%({name})s" for name, _ in RELAY_LOG_FIELDS)
    + " %(message)s"
)

SECRET_KEYS = ("authorization", "token", "api_key", "password")
_SECRET_VALUE_RE = re.compile(r"(?i)(" + "|".join(SECRET_KEYS) + r")=([^\s,;]+)")


class StructuredLogDefaultsFilter(logging.Filter):
    """Fills missing relay fields and masks ``key=value`` secrets in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, default in RELAY_LOG_FIELDS:
            value = getattr(record, name, None)
            if value is None or value == "":
                setattr(record, name, default)
        # Conversation keys may be ints.
        record.chat_id = str(record.chat_id)
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        redacted = _SECRET_VALUE_RE.sub(r"\1=[redacted]", message)
        if redacted != message:
            record.msg = redacted
            record.args = ()
        return True


def normalize_log_level(value: Any) -> str:
    normalized = str(value or "").strip().lower()
    if normalized == "warn":
        normalized = "warning"
    if normalized not in LOG_LEVEL_CHOICES:
        return "info"
    return normalized


def log_level_value(value: Any) -> int:
    return getattr(logging, normalize_log_level(value).upper())


def configure_structured_logger(logger: logging.Logger, *, level: str, stream: IO[str] | None = None) -> None:
    handler = logging.StreamHandler(stream or sys.__stderr__)
    handler.addFilter(StructuredLogDefaultsFilter())
    handler.setFormatter(logging.Formatter(RELAY_LOG_FORMAT))
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(log_level_value(level))
    logger.propagate = False


def configure_domain_log_levels(*, domains: Mapping[str, Any] | None, logger_prefix: str) -> None:
    """Apply ``[logging.domains]`` levels, e.g. ``runner = "debug"`` -> ``<prefix>.runner``."""
    if not isinstance(domains, Mapping):
        return
    for domain, level_value in domains.items():
        name = str(domain or "").strip().lower()
        if name:
            logging.getLogger(f"{logger_prefix}.{name}").setLevel(log_level_value(level_value))
