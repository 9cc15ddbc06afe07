import json
import logging
import os
import platform
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from uuid import uuid4

MAX_LOG_FILES = 5

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
TOKEN_RE = re.compile(
    r"(?i)\b(bearer|token|apikey|api_key|secret|password|passwordeval)\s*[:=]\s*[^\s,;]+"
)


class CategoryFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "category"):
            record.category = "general"
        return True


class ContextFilter(logging.Filter):
    def __init__(self, *, session_id: str, app_version: str) -> None:
        super().__init__()
        self._session_id = session_id
        self._app_version = app_version
        self._hostname = platform.node()

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "session_id"):
            record.session_id = self._session_id
        if not hasattr(record, "app_version"):
            record.app_version = self._app_version
        if not hasattr(record, "hostname"):
            record.hostname = self._hostname
        return True


def sanitize_text(value: str) -> str:
    if not value:
        return value
    sanitized = EMAIL_RE.sub("<email>", value)
    sanitized = TOKEN_RE.sub(r"\1=<redacted>", sanitized)
    return sanitized


class RedactionFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = sanitize_text(record.getMessage())
        record.msg = message
        record.args = ()
        return True


class SanitizingFormatter(logging.Formatter):
    def formatException(self, ei) -> str:
        return sanitize_text(super().formatException(ei))


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        payload = {
            "timestamp": timestamp,
            "level": record.levelname,
            "category": getattr(record, "category", "general"),
            "logger": record.name,
            "message": sanitize_text(record.getMessage()),
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
            "pid": record.process,
            "session_id": getattr(record, "session_id", ""),
            "app_version": getattr(record, "app_version", ""),
            "hostname": getattr(record, "hostname", ""),
        }
        if record.exc_info:
            payload["exception"] = sanitize_text(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=False)


def _install_exception_hook() -> None:
    logger = logging.getLogger(__name__)

    def handle_exception(exc_type, exc, tb) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            logger.info("Interrupted", extra={"category": "shutdown"})
            return
        logger.critical(
            "Unhandled exception",
            exc_info=(exc_type, exc, tb),
            extra={"category": "fatal"},
        )

    sys.excepthook = handle_exception


def _resolve_level(level: str, default: int) -> int:
    return logging.getLevelNamesMapping().get(str(level).upper(), default)


def _prepare(handler: logging.Handler, formatter: logging.Formatter, level: int, context: ContextFilter) -> logging.Handler:
    handler.setFormatter(formatter)
    handler.setLevel(level)
    handler.addFilter(CategoryFilter())
    handler.addFilter(RedactionFilter())
    handler.addFilter(context)
    return handler


def setup_logging(
    log_file: str,
    *,
    log_level: str = "INFO",
    log_console_level: str = "WARNING",
    log_console_enabled: bool = True,
    log_max_bytes: int = 1_000_000,
    log_backup_count: int = 3,
    app_version: str | None = None,
) -> None:
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        try:
            handler.close()
        finally:
            root_logger.removeHandler(handler)

    base_path = Path(log_file)
    if not base_path.suffix:
        base_path = base_path.with_suffix(".log")
    json_path = base_path.with_suffix(".jsonl")

    context_filter = ContextFilter(session_id=uuid4().hex, app_version=str(app_version or ""))
    formatter = SanitizingFormatter(
        "%(asctime)s %(levelname)s %(category)s %(name)s %(process)d %(message)s"
    )
    resolved_level = _resolve_level(log_level, logging.INFO)
    resolved_console_level = _resolve_level(log_console_level, logging.WARNING)
    backup_count = min(MAX_LOG_FILES, max(0, log_backup_count))

    handlers: list[logging.Handler] = []
    file_error: OSError | None = None
    try:
        base_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            _prepare(
                RotatingFileHandler(
                    base_path,
                    maxBytes=log_max_bytes,
                    backupCount=backup_count,
                    encoding="utf-8",
                ),
                formatter,
                resolved_level,
                context_filter,
            )
        )
        handlers.append(
            _prepare(
                RotatingFileHandler(
                    json_path,
                    maxBytes=log_max_bytes,
                    backupCount=backup_count,
                    encoding="utf-8",
                ),
                JsonFormatter(),
                resolved_level,
                context_filter,
            )
        )
    except OSError as exc:
        for handler in handlers:
            handler.close()
        handlers = [_prepare(logging.StreamHandler(), formatter, resolved_level, context_filter)]
        file_error = exc

    if log_console_enabled:
        handlers.append(
            _prepare(logging.StreamHandler(), formatter, resolved_console_level, context_filter)
        )

    root_logger.setLevel(min(resolved_level, resolved_console_level) if log_console_enabled else resolved_level)
    for handler in handlers:
        root_logger.addHandler(handler)

    logging.captureWarnings(True)
    _install_exception_hook()

    logging.getLogger(__name__).debug(
        "Logging initialized (pid %s, file %s)",
        os.getpid(),
        base_path,
        extra={"category": "startup"},
    )
    if file_error is not None:
        logging.getLogger(__name__).warning(
            "Failed to initialize file logging: %s",
            file_error,
            extra={"category": "startup"},
        )
    if backup_count != log_backup_count:
        logging.getLogger(__name__).warning(
            "log_backup_count capped at %s (requested %s)",
            MAX_LOG_FILES,
            log_backup_count,
        )
