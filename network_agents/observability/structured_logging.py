"""
Structured Logging - JSON log lines with tick/agent correlation

Every record carries the tick and agent currently being processed, taken from
context variables so that concurrent agent executions (asyncio tasks and
worker threads) keep their own correlation ids.
"""

import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

tick_id_var: ContextVar[str] = ContextVar("tick_id", default="")
agent_id_var: ContextVar[str] = ContextVar("agent_id", default="")


class LogLevel(str, Enum):
    """Log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StructuredLogger:
    """Logger that formats every message as a JSON document with correlation context."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

    def _format_message(self,
                        level: LogLevel,
                        message: str,
                        extra: Optional[Dict[str, Any]] = None) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level.value,
            "logger": self.name,
            "message": message,
            "context": LogContext.current(),
        }

        if extra:
            log_entry["extra"] = extra

        return json.dumps(log_entry, ensure_ascii=False, default=str)

    def _log(self, level: LogLevel, message: str, extra: Optional[Dict[str, Any]], exc_info: bool):
        numeric = getattr(logging, level.value)
        if not self.logger.isEnabledFor(numeric):
            return
        self.logger.log(numeric, self._format_message(level, message, extra), exc_info=exc_info)

    def debug(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self._log(LogLevel.DEBUG, message, extra, False)

    def info(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self._log(LogLevel.INFO, message, extra, False)

    def warning(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self._log(LogLevel.WARNING, message, extra, False)

    def error(self, message: str, extra: Optional[Dict[str, Any]] = None, exc_info: bool = False):
        self._log(LogLevel.ERROR, message, extra, exc_info)

    def critical(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self._log(LogLevel.CRITICAL, message, extra, False)


class LogContext:
    """Helpers around the correlation context variables."""

    @staticmethod
    def set_tick_id(tick_number: int) -> str:
        tick_id = f"tick_{tick_number}"
        tick_id_var.set(tick_id)
        return tick_id

    @staticmethod
    def set_agent_id(agent_id: str) -> None:
        agent_id_var.set(agent_id)

    @staticmethod
    def current() -> Dict[str, str]:
        return {
            "tick_id": tick_id_var.get(),
            "agent_id": agent_id_var.get(),
        }

    @staticmethod
    def clear_context():
        tick_id_var.set("")
        agent_id_var.set("")


class CorrelationFilter(logging.Filter):
    """Adds tick_id/agent_id attributes to plain (non-structured) log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.tick_id = tick_id_var.get() or "-"
        record.agent_id = agent_id_var.get() or "-"
        return True


def configure_logging(level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure the root logger.

    Args:
        level: Logging level name
        json_logs: True when messages are already JSON documents (StructuredLogger);
            plain records then get the correlation ids appended as text
    """
    handler = logging.StreamHandler()
    handler.addFilter(CorrelationFilter())
    if json_logs:
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [%(tick_id)s/%(agent_id)s] %(message)s"
        ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())


def get_logger(name: str) -> StructuredLogger:
    """Factory for StructuredLogger."""
    return StructuredLogger(name)
