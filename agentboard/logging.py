"""
Structured logging for agentboard.

Workers run one job at a time per thread, so the job, project, task and agent
being handled live in a contextvar. A handler filter copies them onto every
record; the JSON formatter also scrubs secrets (the OpenAI key, the GitHub
token, credentials embedded in the Redis URL) before anything is written.
"""

import json
import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional
from urllib.parse import urlsplit, urlunsplit

STANDARD_FIELDS = ("request_id", "job_id", "project_id", "task_id", "agent_id")

TEXT_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s %(message)s "
    "req=%(request_id)s job=%(job_id)s project=%(project_id)s task=%(task_id)s agent=%(agent_id)s"
)

# Attributes every LogRecord already carries; context and extras never overwrite them.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"asctime", "message"}

_SECRET_MARKERS = ("token", "secret", "password", "api_key", "apikey", "authorization", "credential")
_REDACTED = "[REDACTED]"

_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("agentboard_log_context", default={})


def current_context() -> Dict[str, Any]:
    return dict(_CONTEXT.get())


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Tag every record emitted inside the block with ``fields`` (None values are ignored)."""
    merged = current_context()
    merged.update({key: value for key, value in fields.items() if value is not None})
    token = _CONTEXT.set(merged)
    try:
        yield
    finally:
        _CONTEXT.reset(token)


def log_extra(
    *,
    request_id: Optional[str] = None,
    job_id: Optional[str] = None,
    project_id: Optional[int] = None,
    task_id: Optional[int] = None,
    agent_id: Optional[int] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """
    Build an ``extra=`` mapping for a single log call. Only non-None values are
    kept so the context and the filter defaults still fill the gaps.
    """
    fields = dict(request_id=request_id, job_id=job_id, project_id=project_id, task_id=task_id, agent_id=agent_id)
    fields.update(extra)
    return {key: value for key, value in fields.items() if value is not None}


def _is_secret(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SECRET_MARKERS)


def _without_credentials(url: str) -> str:
    parts = urlsplit(url)
    if not parts.scheme or "@" not in parts.netloc:
        return url
    return urlunsplit(parts._replace(netloc=parts.netloc.rsplit("@", 1)[-1]))


def scrub(key: str, value: Any) -> Any:
    if _is_secret(key):
        return _REDACTED
    if isinstance(value, str):
        return _without_credentials(value)
    if isinstance(value, dict):
        return {str(k): scrub(str(k), v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [scrub(key, item) for item in value]
    return value


class ContextFilter(logging.Filter):
    """Copy the active log context onto records and default missing standard fields to '-'."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in current_context().items():
            if key not in _RECORD_ATTRS and not hasattr(record, key):
                setattr(record, key, value)
        for key in STANDARD_FIELDS:
            if not hasattr(record, key):
                setattr(record, key, "-")
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and key not in entry:
                entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps({key: scrub(key, value) for key, value in entry.items()}, default=str)


def setup_logging(level: Optional[str] = None, json_output: bool = False) -> logging.Logger:
    """Install a single stream handler on the root logger and return the package logger."""
    resolved = (level or os.environ.get("AGENTBOARD_LOG_LEVEL") or "INFO").upper()
    handler = logging.StreamHandler()
    handler.addFilter(ContextFilter())
    handler.setFormatter(JsonFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, resolved, logging.INFO))
    return logging.getLogger("agentboard")


def get_logger(name: str = "agentboard") -> logging.Logger:
    return logging.getLogger(name)


def json_logging_from_env() -> bool:
    return os.environ.get("AGENTBOARD_LOG_JSON", "").lower() in ("1", "true", "yes")


# Process exit codes for scripts/
EXIT_OK = 0
EXIT_RUNTIME_ERROR = 1
EXIT_CONFIG_ERROR = 2
