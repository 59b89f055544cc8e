from __future__ import annotations

import contextvars
import json
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Dict

from flask import g, has_request_context, request


_REQUEST_ID: contextvars.ContextVar[str] = contextvars.ContextVar("facilityflow_request_id", default="")
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")
# Invite tokens travel in the path; they are bearer capabilities and never logged.
_EXTERNAL_TOKEN_PATH = re.compile(r"^(/api/external/)[^/]+")
_RESERVED_RECORD_KEYS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "taskName"}


def redact_path(path: str) -> str:
    return _EXTERNAL_TOKEN_PATH.sub(r"\1<token>", path or "")


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line with request and actor context attached."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "service": "facilityflow",
            "message": record.getMessage(),
        }
        explicit = None if has_request_context() else getattr(record, "request_id", None)
        payload["request_id"] = explicit or current_request_id(default="n/a")
        if has_request_context():
            payload["path"] = redact_path(request.path)
            payload["method"] = request.method
            actor = getattr(g, "actor", None)
            if actor is not None:
                payload["actor_id"] = actor.id
                payload["actor_role"] = actor.role

        for key, value in record.__dict__.items():
            if key in _RESERVED_RECORD_KEYS or key.startswith("_") or key in payload or callable(value):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not bool(app.config.get("LOG_JSON", True)):
        return
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).strip().upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    request_id = str(getattr(g, "request_id", "") or "")
    if not request_id:
        incoming = str(request.headers.get("X-Request-Id") or "").strip()
        request_id = incoming if _REQUEST_ID_PATTERN.match(incoming) else uuid.uuid4().hex
        g.request_id = request_id
    _REQUEST_ID.set(request_id)
    return request_id


def current_request_id(default: str | None = None) -> str:
    if has_request_context():
        request_id = str(getattr(g, "request_id", "") or "")
        if request_id:
            return request_id
    return _REQUEST_ID.get() or default or "n/a"
