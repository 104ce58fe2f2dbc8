"""
Logging Configuration for the Gallery API.

Centralized logging setup. Development runs get color-coded, human-readable
console output; every other environment gets one JSON object per line, ready
for a log shipper. Each record carries the request's correlation ID when one
is set, so all lines produced while serving one request can be grouped.

Key Components:
- `CorrelationFilter`: Copies the correlation ID from the current context onto
  each log record.
- `JSONFormatter`: Structured formatter used outside development.
- `ColoredConsoleFormatter`: Colored formatter for local development.
- `get_logging_config` / `setup_logging`: Build and apply the `dictConfig`
  dictionary from `ENVIRONMENT` and `LOG_LEVEL`.
- `log_function_call`: Decorator logging entry, exit, duration and failures of
  sync and async callables.

The correlation ID is stored in a `ContextVar`, so concurrent requests served
by the same event loop never see each other's IDs.
"""

import os
import json
import time
import asyncio
import functools
import logging
import logging.config
from datetime import datetime
from typing import Dict, Any, Optional
from contextvars import ContextVar

# Context variable for request correlation ID
correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Attributes every LogRecord has; anything else was passed through `extra=`
_RESERVED_RECORD_KEYS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "exc_info",
    "exc_text",
    "stack_info",
    "taskName",
    "correlation_id",
}


class CorrelationFilter(logging.Filter):
    """Filter that adds correlation ID to log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        corr_id = correlation_id.get()
        if corr_id:
            record.correlation_id = corr_id
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        corr_id = getattr(record, "correlation_id", None) or correlation_id.get()
        if corr_id:
            log_entry["correlation_id"] = corr_id

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_RECORD_KEYS
        }
        if extra:
            log_entry["extra"] = extra

        return json.dumps(log_entry, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Colored console formatter for development"""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")

        corr_id = getattr(record, "correlation_id", None)
        corr_part = f" [{corr_id}]" if corr_id else ""

        formatted = (
            f"{color}[{timestamp}] {record.levelname:8} {record.name}{corr_part}: "
            f"{record.getMessage()}{self.RESET}"
        )

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


def get_logging_config() -> Dict[str, Any]:
    """Get logging configuration based on environment"""

    environment = os.getenv("ENVIRONMENT", "development").lower()
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    formatter = "colored_console" if environment == "development" else "json"

    def app_logger() -> Dict[str, Any]:
        return {"level": log_level, "handlers": ["console"], "propagate": False}

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"correlation": {"()": CorrelationFilter}},
        "formatters": {
            "json": {"()": JSONFormatter},
            "colored_console": {"()": ColoredConsoleFormatter},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": formatter,
                "filters": ["correlation"],
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "api": app_logger(),
            "services": app_logger(),
            "core": app_logger(),
            "uvicorn": {"level": "INFO", "handlers": ["console"], "propagate": False},
            "uvicorn.access": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
            "sqlalchemy.engine": {"level": "WARNING", "propagate": True},
        },
        "root": {"level": log_level, "handlers": ["console"]},
    }

    if environment == "production":
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": "json",
            "filters": ["correlation"],
            "filename": os.getenv("LOG_FILE", "/var/log/gallery_api/app.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
        }
        for logger_config in config["loggers"].values():
            if "handlers" in logger_config:
                logger_config["handlers"].append("file")
        config["root"]["handlers"].append("file")

    return config


def setup_logging():
    """Initialize logging configuration"""
    logging.config.dictConfig(get_logging_config())

    logger = logging.getLogger("core.logging")
    environment = os.getenv("ENVIRONMENT", "development")
    logger.info(f"Logging initialized for {environment} environment")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the specified name"""
    return logging.getLogger(name)


def set_correlation_id(corr_id: Optional[str]):
    """Set correlation ID for the current context"""
    correlation_id.set(corr_id)


def get_correlation_id() -> Optional[str]:
    """Get correlation ID from the current context"""
    return correlation_id.get()


def log_function_call(logger: logging.Logger):
    """Decorator to log function calls with execution time"""

    def decorator(func):
        def log_done(start_time: float):
            logger.debug(
                f"Completed {func.__name__}",
                extra={
                    "function_name": func.__name__,
                    "execution_time_ms": round((time.time() - start_time) * 1000, 2),
                    "success": True,
                },
            )

        def log_failed(start_time: float, e: Exception):
            logger.error(
                f"Failed {func.__name__}: {str(e)}",
                extra={
                    "function_name": func.__name__,
                    "execution_time_ms": round((time.time() - start_time) * 1000, 2),
                    "success": False,
                    "error_type": type(e).__name__,
                },
            )

        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.time()
                logger.debug(f"Calling {func.__name__}")
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    log_failed(start_time, e)
                    raise
                log_done(start_time)
                return result

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time = time.time()
            logger.debug(f"Calling {func.__name__}")
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                log_failed(start_time, e)
                raise
            log_done(start_time)
            return result

        return sync_wrapper

    return decorator
