"""
Structured Logging - JSON formatted logs for better observability
"""

import logging
import json
import os
import sys
from datetime import datetime, timezone


class StructuredLogger:
    """JSON structured logger"""

    def __init__(self, name: str = "loomi"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
        self.logger.propagate = False

        # Remove existing handlers
        self.logger.handlers = []

        # Create console handler with JSON formatter
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        self.logger.addHandler(handler)

    def info(self, message: str, **extra):
        """Log info message with structured data"""
        self.logger.info(message, extra={'extra': extra})

    def error(self, message: str, exc_info: bool = False, **extra):
        """Log error message with structured data"""
        self.logger.error(message, exc_info=exc_info, extra={'extra': extra})

    def warning(self, message: str, **extra):
        """Log warning message with structured data"""
        self.logger.warning(message, extra={'extra': extra})

    def debug(self, message: str, **extra):
        """Log debug message with structured data"""
        self.logger.debug(message, extra={'extra': extra})

    def exception(self, message: str, **extra):
        """Log error with the active exception's traceback"""
        self.logger.error(message, exc_info=True, extra={'extra': extra})


class JsonFormatter(logging.Formatter):
    """Format logs as JSON"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name,
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        # Add extra fields
        if hasattr(record, 'extra'):
            log_data.update(record.extra)

        # Add exception info if present
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


_loggers = {}


def get_logger(name: str) -> StructuredLogger:
    """Named logger, created once per name"""
    if name not in _loggers:
        _loggers[name] = StructuredLogger(f"loomi.{name}")
    return _loggers[name]


# Create default logger instance
logger = StructuredLogger()
