from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, is_dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterator, Optional


# Form being worked on and who is acting on it (author flow or a respondent).
_FORM_ID: ContextVar[Optional[str]] = ContextVar("form_id", default=None)
_ACTOR: ContextVar[Optional[str]] = ContextVar("actor", default=None)

_RESERVED = {
    "msg", "args", "levelname", "levelno", "name", "pathname", "filename", "module",
    "exc_info", "exc_text", "stack_info", "lineno", "funcName", "created",
    "msecs", "relativeCreated", "thread", "threadName", "processName", "process",
    "taskName", "form_id", "actor",
}


@contextmanager
def form_context(form_id: Optional[str], actor: Optional[str] = None) -> Iterator[None]:
    """
    Stamp records emitted inside the block with the form id and actor.
    The previous context is restored on exit.
    """
    form_token = _FORM_ID.set(form_id)
    actor_token = _ACTOR.set(actor)
    try:
        yield
    finally:
        _ACTOR.reset(actor_token)
        _FORM_ID.reset(form_token)


def respondent_actor(respondent_id: Any) -> str:
    return f"respondent:{respondent_id}"


class FormContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.form_id = _FORM_ID.get()
        record.actor = _ACTOR.get()
        return True


def _jsonable(value: Any) -> Any:
    # Schedules, answer sets and report rows show up in extras.
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(str(v) for v in value)
    if isinstance(value, tuple):
        return list(value)
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    return value


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "form_id": getattr(record, "form_id", None),
        }
        actor = getattr(record, "actor", None)
        if actor:
            payload["actor"] = actor
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED:
                continue
            value = _jsonable(value)
            try:
                json.dumps(value, ensure_ascii=False)
                payload[key] = value
            except (TypeError, ValueError):
                payload[key] = str(value)

        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_logs: bool = True) -> None:
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(FormContextFilter())

    if json_logs:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s form=%(form_id)s actor=%(actor)s %(message)s"
        ))

    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
