from __future__ import annotations

import logging
import re
import sys
from contextlib import suppress
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

from clipping_pipeline.config import get_settings

job_id_var: ContextVar[str | None] = ContextVar("job_id", default=None)
stage_var: ContextVar[str | None] = ContextVar("stage", default=None)


def set_job_context(job_id: str | None, stage: str | None = None) -> None:
    job_id_var.set(job_id)
    stage_var.set(stage)


def _log_path() -> Path:
    s = get_settings()
    return Path(s.log_dir) / "app.log"


_BEARER_RE = re.compile(r"(?i)\bBearer\s+([A-Za-z0-9_\-\.=]+)")
_URL_CREDS_RE = re.compile(r"(?i)([a-z][a-z0-9+\-.]*://)([^:@/]+):([^@/]+)@")
_KV_RE = re.compile(r"(?i)\b(api_token|redis_url|token|secret|password|api_key)\b\s*=\s*([^\s,;]+)")


def _secret_literals() -> list[str]:
    """
    Configured secret values that must never appear in logs.
    """
    vals: list[str] = []
    with suppress(Exception):
        s = get_settings()
        tok = s.api_token_value()
        if tok:
            vals.append(tok)
        url = str(s.secret.redis_url or "")
        if url:
            vals.append(url)
    # Ignore tiny values to avoid over-redaction.
    return [v for v in dict.fromkeys(vals) if len(v) >= 8]


def _redact_str(s: str) -> str:
    for lit in _secret_literals():
        if lit in s:
            s = s.replace(lit, "***REDACTED***")
    s = _URL_CREDS_RE.sub(r"\1***REDACTED***@", s)
    s = _BEARER_RE.sub("Bearer ***REDACTED***", s)
    s = _KV_RE.sub(lambda m: f"{m.group(1)}=***REDACTED***", s)
    return s


def redact_event(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    for k, v in list(event_dict.items()):
        if isinstance(v, str):
            event_dict[k] = _redact_str(v)
    return event_dict


def add_contextvars(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    jid = job_id_var.get()
    stage = stage_var.get()
    if jid:
        event_dict.setdefault("job_id", jid)
    if stage:
        event_dict.setdefault("stage", stage)
    return event_dict


def rename_event_to_msg(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    if "msg" not in event_dict and "event" in event_dict:
        event_dict["msg"] = event_dict.pop("event")
    return event_dict


def _configure_structlog() -> structlog.stdlib.BoundLogger:
    s = get_settings()
    level = str(s.log_level).upper()
    log_path = _log_path()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)

    # Avoid duplicates if re-imported
    if getattr(root, "_clipping_pipeline_structlog_configured", False):
        return structlog.get_logger("clipping_pipeline")

    shared = [
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
        structlog.stdlib.add_log_level,
        add_contextvars,
        redact_event,
        structlog.processors.format_exc_info,
        rename_event_to_msg,
    ]

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=shared,
    )

    file_handler = RotatingFileHandler(
        filename=str(log_path),
        maxBytes=int(s.log_max_bytes),
        backupCount=int(s.log_backup_count),
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)

    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(stream_handler)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root._clipping_pipeline_structlog_configured = True
    return structlog.get_logger("clipping_pipeline")


logger = _configure_structlog()


def set_log_level(level: str) -> None:
    """
    Runtime log level override (CLI convenience).
    Only raises/lowers the filtering level; handlers stay as configured.
    """
    lvl = getattr(logging, str(level).upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(lvl)
    for h in root.handlers:
        h.setLevel(lvl)
