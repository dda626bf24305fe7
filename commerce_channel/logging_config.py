"""JSON logging for the commerce channel.

Every record is a single JSON line. Conversation identifiers found in the
record context (client number, advisor, gateway SID) are lifted to top-level
keys so log queries can filter on them without digging into `context`.
Credentials that end up in a context dict are masked before serialization.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

ROUTING_KEYS = ("client_number", "advisor_id", "message_sid")
REDACTED_KEYS = frozenset({"auth_token", "api_key", "authorization", "signature"})
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "twilio.http_client")


def _redact(context: dict[str, Any]) -> dict[str, Any]:
    return {key: ("***" if key.lower() in REDACTED_KEYS else value) for key, value in context.items()}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            context = _redact(context)
            for key in ROUTING_KEYS:
                if context.get(key) is not None:
                    entry[key] = str(context[key])
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"commerce_channel.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Binds one conversation's routing data to every record it emits.

    A per-call `context=` keyword is merged on top of the bound values.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = {**(self.extra or {}), **(kwargs.pop("context", None) or {})}
        if context:
            kwargs["extra"] = {**kwargs.get("extra", {}), "context": context}
        return msg, kwargs
