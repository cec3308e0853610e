# SPDX-License-Identifier: Apache-2.0
"""
JSON-lines logging for pipeline components.

Each component writes ``<log dir>/<component>.jsonl`` through a rotating
handler. A record is one JSON object with ``ts``, ``lvl``, ``cmp``, ``msg`` and
``ctx``. Context values under secret-looking keys are replaced before they
reach disk, including inside nested mappings.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from seedforge.runtime.interfaces.ilogger import ILogger

AUDIT_LEVEL = 25
logging.addLevelName(AUDIT_LEVEL, "AUDIT")

DEFAULT_LOG_DIR = Path(os.environ.get("SEEDFORGE_LOG_DIR") or "data/logs")
ROTATION_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 3

REDACTED = "<redacted>"
SECRET_MARKERS = ("password", "secret", "token", "api_key", "apikey", "credential", "authorization")

_LOGGER_CACHE: Dict[str, "JSONLogger"] = {}


def _is_secret(key: str) -> bool:
    lowered = key.lower()
    return lowered == "key" or any(marker in lowered for marker in SECRET_MARKERS)


def redact_context(data: Mapping[str, Any]) -> Dict[str, Any]:
    redacted: Dict[str, Any] = {}
    for key, value in data.items():
        if _is_secret(str(key)):
            redacted[key] = REDACTED
        elif isinstance(value, Mapping):
            redacted[key] = redact_context(value)
        else:
            redacted[key] = value
    return redacted


class JSONFormatter(logging.Formatter):
    def __init__(self, component: str) -> None:
        super().__init__()
        self.component = component

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        context = dict(getattr(record, "context", None) or {})
        if record.exc_info:
            context["exc"] = self.formatException(record.exc_info)
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "lvl": record.levelname,
            "cmp": self.component,
            "msg": record.getMessage(),
            "ctx": context,
        }
        return json.dumps(payload, ensure_ascii=False, default=str)


class JSONLogger(ILogger):
    def __init__(self, component: str = "runtime", log_file: Optional[Path] = None) -> None:
        self.component = component
        self.log_path = (Path(log_file) if log_file else DEFAULT_LOG_DIR / f"{component}.jsonl").absolute()
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        # One stdlib logger per destination file so two components never share handlers.
        digest = hashlib.sha1(str(self.log_path).encode("utf-8")).hexdigest()[:10]
        self._logger = logging.getLogger(f"seedforge.{component}.{digest}")
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False
        self._handler = self._attach_handler()

    def _attach_handler(self) -> RotatingFileHandler:
        for handler in self._logger.handlers:
            if isinstance(handler, RotatingFileHandler) and Path(handler.baseFilename) == self.log_path:
                return handler
        handler = RotatingFileHandler(self.log_path, maxBytes=ROTATION_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
        handler.setFormatter(JSONFormatter(self.component))
        self._logger.addHandler(handler)
        return handler

    @property
    def handler(self) -> RotatingFileHandler:
        return self._handler

    def _emit(self, level: int, msg: str, context: Mapping[str, Any], error: Optional[BaseException] = None) -> None:
        ctx = redact_context(context)
        exc_info = None
        if error is not None:
            ctx["error"] = repr(error)
            exc_info = (type(error), error, error.__traceback__)
        self._logger.log(level, msg, extra={"context": ctx}, exc_info=exc_info)

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._emit(logging.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._emit(logging.INFO, msg, kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._emit(logging.WARNING, msg, kwargs)

    def error(self, msg: str, error: Optional[BaseException] = None, **kwargs: Any) -> None:
        self._emit(logging.ERROR, msg, kwargs, error)

    def critical(self, msg: str, error: Optional[BaseException] = None, **kwargs: Any) -> None:
        self._emit(logging.CRITICAL, msg, kwargs, error)

    def audit(self, action: str, actor: str, outcome: str, **details: Any) -> None:
        self._emit(AUDIT_LEVEL, action, {"action": action, "actor": actor, "outcome": outcome, **details})


def get_logger(component: str = "runtime", log_file: Optional[Path] = None) -> JSONLogger:
    """Return the cached logger for ``component`` writing to ``log_file`` (or the default log dir)."""
    destination = Path(log_file) if log_file else DEFAULT_LOG_DIR / f"{component}.jsonl"
    key = f"{component}:{destination.absolute()}"
    logger = _LOGGER_CACHE.get(key)
    if logger is None:
        logger = _LOGGER_CACHE[key] = JSONLogger(component=component, log_file=log_file)
    return logger


__all__ = [
    "AUDIT_LEVEL",
    "BACKUP_COUNT",
    "JSONLogger",
    "REDACTED",
    "ROTATION_BYTES",
    "get_logger",
    "redact_context",
]
