from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from crm_client.context import get_correlation_id, get_mutation_id
from crm_client.core.config import Settings, get_settings
from crm_client.otel import current_trace_id


_STANDARD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}

# Structured fields the client attaches through ``extra=``.
_CLIENT_FIELDS = frozenset(
    {
        "permission",
        "principal_id",
        "entity_type",
        "entity_id",
        "action",
        "state",
        "source",
        "duration_ms",
        "compliance_level",
        "risk_score",
        "notification_kind",
        "error",
    }
)
_MAX_ERROR_LENGTH = 500
_NOISY_LOGGERS = ("sqlalchemy.engine", "opentelemetry")


def _stamp_context(record: logging.LogRecord) -> None:
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    if not getattr(record, "mutation_id", None):
        record.mutation_id = get_mutation_id()


class CorrelationIdFilter(logging.Filter):
    """Adds the active correlation and mutation ids to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        _stamp_context(record)
        return True


_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _DEFAULT_RECORD_FACTORY(*args, **kwargs)
    _stamp_context(record)
    return record


def _client_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {
        key: value
        for key, value in record.__dict__.items()
        if key in _CLIENT_FIELDS and key not in _STANDARD_ATTRS and value is not None
    }
    error = fields.get("error")
    if isinstance(error, str) and len(error) > _MAX_ERROR_LENGTH:
        fields["error"] = error[:_MAX_ERROR_LENGTH]
    return fields


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line: envelope keys at the top, client fields under ``fields``."""

    def format(self, record: logging.LogRecord) -> str:
        fields = _client_fields(record)
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "mutation_id": getattr(record, "mutation_id", None),
            "trace_id": current_trace_id(),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


def configure_logging(settings: Settings | None = None) -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_crm_client_configured", False):
        return

    resolved = settings or get_settings()
    level = logging.getLevelName(resolved.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(CorrelationIdFilter())

    root_logger.handlers.clear()
    root_logger.filters.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_record_factory)
    root_logger.addHandler(handler)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    root_logger._crm_client_configured = True  # type: ignore[attr-defined]
