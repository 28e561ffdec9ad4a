"""Structured JSON logging for the tap validation service.

Engines log dotted event names (``fraud.event_created``, ``nfc.tap_rejected``,
``country_rules.upserted``). The prefix is emitted as ``component`` so POS
rejections can be filtered apart from fraud and audit traffic.
"""

from __future__ import annotations

import json
import logging
from logging import LogRecord
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace


NFC_COMPONENTS = frozenset({"audit", "cards", "country_rules", "fraud", "health", "nfc", "offers"})

_RESERVED_LOG_RECORD_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
}


class InterceptHandler(logging.Handler):
    """Route stdlib records (uvicorn, sqlalchemy) into Loguru with their extras."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        try:
            message = record.getMessage()
        except Exception:  # pragma: no cover - malformed format strings
            message = record.msg if isinstance(record.msg, str) else str(record.msg)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_RECORD_ATTRS
        }

        safe_message = message.replace("{", "{{").replace("}", "}}")

        bound_logger = logger.bind(**extra) if extra else logger
        bound_logger.opt(depth=6, exception=record.exc_info).log(level, safe_message)


def event_component(message: str) -> str | None:
    """Return the engine prefix of a dotted event name, if it names one."""

    prefix, dot, _ = message.partition(".")
    if dot and prefix in NFC_COMPONENTS:
        return prefix
    return None


def _serialize_log(message: "logger.Message", metadata: Dict[str, Any]) -> None:
    record = message.record
    span = trace.get_current_span()
    span_context = span.get_span_context() if span else None

    payload: Dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": record["message"],
        "logger": record["name"],
        "service": metadata.get("service_name", "unknown"),
        "environment": metadata.get("environment", "unknown"),
        "version": metadata.get("version", "unknown"),
    }

    component = event_component(record["message"])
    if component:
        payload["component"] = component

    if span_context and span_context.is_valid:
        payload["trace_id"] = f"{span_context.trace_id:032x}"
        payload["span_id"] = f"{span_context.span_id:016x}"

    if record["extra"]:
        payload.update(record["extra"])

    if record["exception"] is not None:
        exc_type = record["exception"].type
        payload["exception"] = exc_type.__name__ if exc_type else None

    print(json.dumps(payload, default=str))


def configure_logging(*, service_name: str, environment: str, version: str, level: str = "INFO") -> None:
    """Route Loguru and stdlib records to one JSON sink.

    ``level`` gates the engine events; ``offers.selected`` and
    ``fraud.member_score_updated`` only appear at DEBUG. Driver chatter from uvicorn access
    logs, aiosqlite and the SQLAlchemy engine is held at WARNING.
    """

    logger.remove()
    metadata = {"service_name": service_name, "environment": environment, "version": version}
    logger.add(
        lambda message: _serialize_log(message, metadata),
        level=level.upper(),
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
