"""
MapRoulette API - Structured Logging

JSON log entries carrying the request correlation id and acting user,
kept in a bounded in-memory buffer and forwarded to the standard
``logging`` hierarchy under ``maproulette.structured``.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Any
from datetime import datetime, timezone
from enum import Enum
from collections import deque
import contextvars
import json
import logging
import os
import time
import traceback
import uuid


class LogLevel(str, Enum):
    """Log severity levels"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def numeric(self) -> int:
        return getattr(logging, self.value.upper())


class LogCategory(str, Enum):
    """Log categories for filtering"""
    REQUEST = "request"
    RESPONSE = "response"
    DATABASE = "database"
    CACHE = "cache"
    AUTH = "auth"
    SECURITY = "security"
    AUDIT = "audit"
    SYSTEM = "system"


@dataclass
class LogEntry:
    """A structured log entry"""
    id: str
    timestamp: str
    level: LogLevel
    category: LogCategory
    message: str
    service: str
    correlation_id: Optional[str] = None
    request_id: Optional[str] = None
    user_id: Optional[str] = None
    duration_ms: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["level"] = self.level.value
        data["category"] = self.category.value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass
class RequestContext:
    """Context for request tracing"""
    request_id: str
    correlation_id: str
    user_id: Optional[str] = None
    start_time: float = field(default_factory=time.perf_counter)

    @staticmethod
    def create(request_id: Optional[str] = None, correlation_id: Optional[str] = None) -> "RequestContext":
        request_id = request_id or str(uuid.uuid4())
        return RequestContext(request_id=request_id, correlation_id=correlation_id or request_id)

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.start_time) * 1000


# Async-safe context var (one value per request task)
_context_var: contextvars.ContextVar[Optional[RequestContext]] = contextvars.ContextVar(
    "request_context", default=None
)


def get_current_context() -> Optional[RequestContext]:
    return _context_var.get()


def set_current_context(context: RequestContext) -> contextvars.Token:
    return _context_var.set(context)


def reset_current_context(token: contextvars.Token) -> None:
    _context_var.reset(token)


class LogBuffer:
    """Bounded buffer of recent entries"""

    def __init__(self, max_size: int = 10000):
        self.max_size = max_size
        self._buffer: deque = deque(maxlen=max_size)

    def append(self, entry: LogEntry) -> None:
        self._buffer.append(entry)

    def get_recent(self, count: int = 100) -> List[LogEntry]:
        items = list(self._buffer)
        return items[-count:]

    def clear(self) -> int:
        count = len(self._buffer)
        self._buffer.clear()
        return count

    def filter(
        self,
        level: Optional[LogLevel] = None,
        category: Optional[LogCategory] = None,
        correlation_id: Optional[str] = None,
        user_id: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 100,
    ) -> List[LogEntry]:
        results = []
        for entry in reversed(self._buffer):
            if level and entry.level.numeric < level.numeric:
                continue
            if category and entry.category != category:
                continue
            if correlation_id and entry.correlation_id != correlation_id:
                continue
            if user_id and entry.user_id != user_id:
                continue
            if search and search.lower() not in entry.message.lower():
                continue
            results.append(entry)
            if len(results) >= limit:
                break
        return results


class StructuredLogger:
    """Structured logger for the MapRoulette API"""

    def __init__(
        self,
        service_name: str = "maproulette",
        min_level: LogLevel = LogLevel.INFO,
        buffer_size: int = 10000,
    ):
        self.service_name = service_name
        self.min_level = min_level
        self.buffer = LogBuffer(buffer_size)
        self._std_logger = logging.getLogger(f"{service_name}.structured")

    def _create_entry(
        self,
        level: LogLevel,
        category: LogCategory,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
        error: Optional[Exception] = None,
        duration_ms: Optional[float] = None,
        user_id: Optional[str] = None,
    ) -> LogEntry:
        context = get_current_context()

        entry = LogEntry(
            id=str(uuid.uuid4())[:12],
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            category=category,
            message=message,
            service=self.service_name,
            correlation_id=context.correlation_id if context else None,
            request_id=context.request_id if context else None,
            user_id=user_id or (context.user_id if context else None),
            duration_ms=duration_ms,
            metadata=metadata or {},
            tags=tags or [],
        )

        if error:
            entry.error = {
                "type": type(error).__name__,
                "message": str(error),
                "stack_trace": traceback.format_exc(),
            }

        return entry

    def _log(self, level: LogLevel, category: LogCategory, message: str, **kwargs) -> Optional[LogEntry]:
        if level.numeric < self.min_level.numeric:
            return None

        entry = self._create_entry(level, category, message, **kwargs)
        self.buffer.append(entry)
        self._std_logger.log(level.numeric, entry.to_json())
        return entry

    def debug(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.DEBUG, category, message, **kwargs)

    def info(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.INFO, category, message, **kwargs)

    def warning(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.WARNING, category, message, **kwargs)

    def error(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.ERROR, category, message, **kwargs)

    # Convenience methods
    def request(self, method: str, path: str, **kwargs) -> Optional[LogEntry]:
        return self.info(
            f"{method} {path}",
            category=LogCategory.REQUEST,
            metadata={"method": method, "path": path, **kwargs.pop("metadata", {})},
            **kwargs,
        )

    def response(self, status_code: int, duration_ms: float, **kwargs) -> Optional[LogEntry]:
        level = LogLevel.INFO if status_code < 400 else LogLevel.WARNING if status_code < 500 else LogLevel.ERROR
        return self._log(
            level,
            LogCategory.RESPONSE,
            f"Response {status_code}",
            duration_ms=duration_ms,
            metadata={"status_code": status_code, **kwargs.pop("metadata", {})},
            **kwargs,
        )

    def security_event(self, event_type: str, **kwargs) -> Optional[LogEntry]:
        return self.warning(
            f"Security event: {event_type}",
            category=LogCategory.SECURITY,
            tags=["security", event_type],
            **kwargs,
        )

    def audit(self, action: str, resource: str, **kwargs) -> Optional[LogEntry]:
        return self.info(
            f"Audit: {action} on {resource}",
            category=LogCategory.AUDIT,
            tags=["audit"],
            metadata={"action": action, "resource": resource, **kwargs.pop("metadata", {})},
            **kwargs,
        )

    def get_logs(self, **filters) -> List[LogEntry]:
        return self.buffer.filter(**filters)


# Global singleton
_logger: Optional[StructuredLogger] = None


def get_logger() -> StructuredLogger:
    """Get or create the global MapRoulette logger"""
    global _logger
    if _logger is None:
        _logger = StructuredLogger(
            service_name="maproulette",
            min_level=LogLevel.DEBUG if os.getenv("DEBUG") else LogLevel.INFO,
        )
    return _logger


def log_security(event_type: str, **kwargs) -> Optional[LogEntry]:
    return get_logger().security_event(event_type, **kwargs)


def log_audit(action: str, resource: str, **kwargs) -> Optional[LogEntry]:
    return get_logger().audit(action, resource, **kwargs)
