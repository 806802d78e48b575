import json
import logging
from datetime import UTC, datetime

_EXTRA_FIELDS = (
    "request_id",
    "dialect",
    "model",
    "upstream_model",
    "stream",
    "message_count",
    "position",
    "role",
    "text_length",
    "route_index",
    "route_address",
    "refresh_handle",
    "from_index",
    "to_index",
    "identity_kind",
    "email",
    "reason",
    "attempt",
    "max_attempts",
    "status_code",
    "upstream_body",
    "chunk_count",
    "response_chars",
    "latency_ms",
    "in_flight",
    "error",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": datetime.now(tz=UTC).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        for field in _EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(log_level: str, debug: bool = False) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel("DEBUG" if debug else log_level.upper())
    # httpx logs every request at INFO; keep it out of the gateway stream
    logging.getLogger("httpx").setLevel(logging.WARNING)
