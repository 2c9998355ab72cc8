"""
Logging for the chat engine

Console output is human-readable in debug mode and one JSON object per line
otherwise. Chat events (conversation changes, model usage, recovered failures)
are logged with an "event_type" extra so they can be filtered downstream.
"""

import json
import logging
import logging.handlers
import time
import traceback
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from config.app_config import AppConfig, get_config

SERVICE_NAME = "dbaas_chat"

# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRS = set(logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__) | {"message", "asctime"}

# Third-party loggers that are too chatty below WARNING
_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "urllib3")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON line"""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        extra = {key: value for key, value in record.__dict__.items() if key not in _RECORD_ATTRS}
        if extra:
            payload["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
            }

        return json.dumps(payload, ensure_ascii=False, default=str)


def _build_handlers(config: AppConfig) -> List[logging.Handler]:
    level = getattr(logging, config.logging.level)

    console = logging.StreamHandler()
    console.setLevel(level)
    if config.debug:
        console.setFormatter(logging.Formatter(config.logging.format + " [%(filename)s:%(lineno)d]"))
    else:
        console.setFormatter(StructuredFormatter())
    handlers: List[logging.Handler] = [console]

    if config.logging.enable_file_logging:
        log_file = Path(config.logging.log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        # Files keep everything, rotated at 5MB
        file_handler = logging.handlers.RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(StructuredFormatter())
        handlers.append(file_handler)

    return handlers


def setup_logging(config: Optional[AppConfig] = None) -> logging.Logger:
    """
    Configure the root logger from the logging section of the config

    Replaces any handlers already installed on the root logger.

    Args:
        config: Configuration to use, defaults to the global one

    Returns:
        logging.Logger: The root logger
    """
    config = config or get_config()

    root = logging.getLogger()
    root.setLevel(getattr(logging, config.logging.level))
    root.handlers.clear()
    for handler in _build_handlers(config):
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


@contextmanager
def log_execution_time(logger: logging.Logger, operation: str, **extra_fields):
    """
    Time the wrapped block and log how it ended

    Exceptions are logged with their duration and re-raised.
    """
    started = time.perf_counter()
    logger.debug(f"Starting {operation}", extra={"operation": operation, **extra_fields})

    try:
        yield
    except Exception as e:
        logger.error(f"Failed {operation}: {e}", extra={
            "operation": operation,
            "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            "status": "error",
            "error_type": type(e).__name__,
            **extra_fields
        })
        raise

    logger.info(f"Completed {operation}", extra={
        "operation": operation,
        "duration_ms": round((time.perf_counter() - started) * 1000, 1),
        "status": "success",
        **extra_fields
    })


def _log_event(logger: logging.Logger, level: int, event_type: str, message: str, **fields):
    logger.log(level, message, extra={"event_type": event_type, "event_time": _now_iso(), **fields})


def log_model_usage(logger: logging.Logger, model: str, tokens_used: int, **details):
    """
    Log token consumption of one model call

    Args:
        logger: Logger instance
        model: Model name
        tokens_used: Total tokens billed for the call
        **details: e.g. input_tokens / output_tokens
    """
    _log_event(logger, logging.INFO, "model_usage", f"Model usage: {model} used {tokens_used} tokens",
               model=model, tokens_used=tokens_used, **details)


def log_conversation_event(logger: logging.Logger, event_type: str, conversation_id: str, **details):
    """Log a change to a conversation ("created", "message_added", "deleted", "updated")"""
    _log_event(logger, logging.DEBUG, "conversation_event", f"Conversation {event_type}: {conversation_id}",
               conversation_event_type=event_type, conversation_id=conversation_id, **details)


class ErrorTracker:
    """
    Counts and logs recovered failures

    Raised exceptions go through track_error(); failures that arrive as values
    (a failed BackendResult) go through track_failure(). Both are counted per
    "<kind>:<context>" key.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.error_counts: Dict[str, int] = {}

    def _count(self, kind: str, context: str) -> int:
        key = f"{kind}:{context}"
        self.error_counts[key] = self.error_counts.get(key, 0) + 1
        return self.error_counts[key]

    def track_error(self, error: Exception, context: str = "", **extra_info):
        """Log an exception caught while running `context`"""
        kind = type(error).__name__
        count = self._count(kind, context)
        self.logger.error(
            f"Error in {context}: {error}",
            extra={"event_type": "error", "error_type": kind, "context": context, "error_count": count, **extra_info},
            exc_info=(type(error), error, error.__traceback__) if error.__traceback__ is not None else None
        )

    def track_failure(self, kind: str, message: str, context: str = "", **extra_info):
        """Log a failure reported as a value, e.g. kind="send_failed" """
        count = self._count(kind, context)
        self.logger.error(
            f"{kind} in {context}: {message}",
            extra={"event_type": "failure", "error_type": kind, "context": context, "error_count": count, **extra_info}
        )

    def get_error_summary(self) -> Dict[str, Any]:
        return {
            "total_errors": sum(self.error_counts.values()),
            "unique_errors": len(self.error_counts),
            "error_breakdown": dict(self.error_counts),
            "generated_at": _now_iso(),
        }


_logging_configured = False
_error_tracker: Optional[ErrorTracker] = None


def get_error_tracker() -> ErrorTracker:
    """
    Shared error tracker

    Does not install handlers; initialize_logging() does.
    """
    global _error_tracker
    if _error_tracker is None:
        _error_tracker = ErrorTracker(get_logger(f"{SERVICE_NAME}.errors"))
    return _error_tracker


def initialize_logging(config: Optional[AppConfig] = None) -> ErrorTracker:
    """Configure logging once per process and return the shared error tracker"""
    global _logging_configured

    if not _logging_configured:
        setup_logging(config)
        _logging_configured = True

    return get_error_tracker()
