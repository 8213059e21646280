"""
MCP Utilities

Structured logging, MCP-compliant error responses and the tool wrapper
shared by the server and CLI surfaces.
"""

import os
import time
import uuid
import json
import logging
import functools
from datetime import datetime
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from collections import defaultdict
from contextvars import ContextVar

# =============================================================================
# Structured Logging
# =============================================================================

LOG_LEVEL = os.environ.get("VIDEOFLOW_LOG_LEVEL", "INFO").upper()

logger = logging.getLogger("comfyui-videoflow")
logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))


class JSONFormatter(logging.Formatter):
    """Format log records as JSON for machine parseability."""

    def format(self, record):
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"

        log_entry = {
            "timestamp": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "correlation_id"):
            log_entry["correlation_id"] = record.correlation_id
        if hasattr(record, "custom_fields"):
            log_entry.update(record.custom_fields)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, separators=(",", ":"), default=str)


if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(JSONFormatter())
    logger.addHandler(_handler)


def get_logger(area: str) -> logging.Logger:
    """Child logger for one area of the package (e.g. "stages")."""
    return logger.getChild(area)


# Correlation ID context variable
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def set_correlation_id(cid: str):
    """Set correlation ID for current context."""
    correlation_id_var.set(cid)


def get_correlation_id() -> str:
    """Get current correlation ID or generate new one."""
    cid = correlation_id_var.get()
    if cid is None:
        cid = str(uuid.uuid4())[:8]
        correlation_id_var.set(cid)
    return cid


def clear_correlation_id():
    """Clear correlation ID from context."""
    correlation_id_var.set(None)


def log_structured(level: str, message: str, **kwargs):
    """Emit structured JSON log with correlation ID and custom fields."""
    extra = {"correlation_id": get_correlation_id()}
    if kwargs:
        extra["custom_fields"] = kwargs
    getattr(logger, level)(message, extra=extra)


@dataclass
class ToolInvocation:
    """Track a tool invocation for logging with correlation support."""

    tool_name: str
    invocation_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    correlation_id: str = field(default_factory=get_correlation_id)
    start_time: float = field(default_factory=time.time)

    def complete(self, status: str = "success", error: str = None) -> Dict[str, Any]:
        """Log completion with structured JSON format."""
        latency_ms = (time.time() - self.start_time) * 1000
        log_entry = {
            "tool": self.tool_name,
            "invocation_id": self.invocation_id,
            "correlation_id": self.correlation_id,
            "latency_ms": round(latency_ms, 2),
            "status": status,
        }
        if error:
            log_entry["error"] = error

        if status == "success":
            log_structured("info", "tool_completed", **log_entry)
        elif status == "rate_limited":
            log_structured("warning", "tool_rate_limited", **log_entry)
        else:
            log_structured("error", "tool_failed", **log_entry)

        return log_entry


# =============================================================================
# MCP-Compliant Error Responses
# =============================================================================


@dataclass
class MCPError:
    """
    MCP-compliant error response.

    Tool execution errors carry isError: true
    """

    message: str
    code: str = "TOOL_ERROR"
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to MCP-compliant error dict."""
        result = {
            "error": self.message,
            "code": self.code,
            "isError": True,
        }
        if self.details:
            result["details"] = self.details
        return result


def mcp_error(
    message: str,
    code: str = "TOOL_ERROR",
    details: Dict[str, Any] = None,
) -> Dict[str, Any]:
    """
    Create an MCP-compliant error response.

    Example:
        return mcp_error("Workflow has dangling references", "VALIDATION_ERROR")
    """
    return MCPError(message, code, details).to_dict()


def validation_error(message: str, field: str = None) -> Dict[str, Any]:
    """Input validation error."""
    details = {"field": field} if field else None
    return mcp_error(message, "VALIDATION_ERROR", details)


# =============================================================================
# Rate Limiting
# =============================================================================


class RateLimiter:
    """Sliding-window call limiter for MCP tools."""

    def __init__(self, max_calls: int = 100, window_seconds: int = 60):
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._calls: Dict[str, List[float]] = defaultdict(list)

    def check(self, tool_name: str) -> bool:
        """Record a call and return False if the tool is over its limit."""
        now = time.time()
        self._calls[tool_name] = [t for t in self._calls[tool_name] if now - t < self.window_seconds]

        if len(self._calls[tool_name]) >= self.max_calls:
            return False

        self._calls[tool_name].append(now)
        return True

    def get_reset_time(self, tool_name: str) -> float:
        """Get seconds until rate limit resets."""
        if not self._calls[tool_name]:
            return 0
        oldest = min(self._calls[tool_name])
        return max(0, self.window_seconds - (time.time() - oldest))


_rate_limiter = RateLimiter(max_calls=int(os.environ.get("VIDEOFLOW_RATE_LIMIT", "100")), window_seconds=60)


def rate_limit_error(tool_name: str) -> Dict[str, Any]:
    """Rate limit exceeded error."""
    return mcp_error(
        f"Rate limit exceeded for {tool_name}",
        "RATE_LIMITED",
        {
            "retry_after_seconds": round(_rate_limiter.get_reset_time(tool_name), 1),
            "limit": _rate_limiter.max_calls,
            "window_seconds": _rate_limiter.window_seconds,
        },
    )


# =============================================================================
# Tool Decorator with Logging and Rate Limiting
# =============================================================================


def mcp_tool_wrapper(func):
    """
    Decorator that adds MCP-compliant logging and rate limiting to tools.

    Example:
        @mcp.tool()
        @mcp_tool_wrapper
        def my_tool(param: str) -> dict:
            ...
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        tool_name = func.__name__
        invocation = ToolInvocation(tool_name)

        if not _rate_limiter.check(tool_name):
            invocation.complete("rate_limited")
            return rate_limit_error(tool_name)

        try:
            result = func(*args, **kwargs)

            if isinstance(result, dict) and result.get("isError"):
                invocation.complete("error", result.get("error"))
            else:
                invocation.complete("success")

            return result

        except Exception as e:
            invocation.complete("error", str(e))
            return mcp_error(str(e), "INTERNAL_ERROR")

    return wrapper
