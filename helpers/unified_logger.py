"""
Unified logging for the exchange connector.

Every component (REST transport, rate limiter, stream connections, the
multiplexer and the client facade) logs through a ``UnifiedLogger`` so that
console and file output share one format and carry a component identifier.

Based on loguru. Sinks are installed once per process:
- coloured console output with source location (module:function:line)
- a rolling history file shared by all components
- a per-session file

Secrets must never be passed to these loggers; credential-bearing objects
mask themselves in ``repr``.
"""

import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger as _logger


_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[short_name]}</cyan> | "
    "<level>{message}</level>"
)

_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
    "{level:<8} | "
    "{extra[component_id]:<40} | "
    "{message}"
)

_SOURCE_WIDTH = 50


def _logs_dir() -> Path:
    configured = os.getenv("CONNECTOR_LOG_DIR")
    if configured:
        path = Path(configured)
    else:
        path = Path(__file__).parent.parent / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def _truncate_module_path(module: str, max_width: int) -> str:
    if len(module) <= max_width:
        return module

    parts = module.split(".")
    idx = len(parts) - 2
    while idx >= 0:
        candidate = ".".join(parts[idx:])
        if len(candidate) + 3 <= max_width:
            return f"...{candidate}"
        idx -= 1

    kept = parts[-1]
    return f"...{kept[-(max_width - 3):]}" if len(kept) + 3 > max_width else f"...{kept}"


def _format_source(record) -> bool:
    module_name = record.get("module") or record.get("name", "")
    function_name = record.get("function", "")
    line_number = record.get("line", 0)

    # function:line is always shown in full, the module path absorbs truncation
    suffix = f":{function_name}:{line_number}" if function_name else f":{line_number}"
    available = _SOURCE_WIDTH - len(suffix)
    module_display = "..." if available <= 3 else _truncate_module_path(module_name, available)

    record["extra"]["short_name"] = f"{module_display}{suffix}".rjust(_SOURCE_WIDTH)
    return True


def _ensure_component(record) -> bool:
    if "component_id" not in record["extra"]:
        record["extra"]["component_id"] = "UNKNOWN"
    return True


class UnifiedLogger:
    """
    Component-scoped wrapper around the shared loguru logger.

    Features:
    - Component identifier (``TYPE:NAME[:k=v...]``) bound to every record
    - Console + history + session sinks configured once per process
    - ``.log(message, level)`` for call sites that pick the level dynamically
    """

    def __init__(
        self,
        component_type: str,
        component_name: str,
        context: Optional[Dict[str, Any]] = None,
        log_to_console: bool = True,
        log_level: str = "INFO",
        log_to_file: bool = True,
    ):
        """
        Initialize unified logger.

        Args:
            component_type: Type of component (transport, stream, client, core)
            component_name: Name of the specific component
            context: Additional context (symbol, stream, connection id, ...)
            log_to_console: Whether to install the console sink
            log_level: Minimum console log level
            log_to_file: Whether to install the history/session file sinks
        """
        self.component_type = component_type.upper()
        self.component_name = component_name.upper()
        self.context = context or {}
        self.log_level = log_level.upper()

        self.component_id = f"{self.component_type}:{self.component_name}"
        if self.context:
            context_str = ":".join(f"{k}={v}" for k, v in self.context.items())
            self.component_id = f"{self.component_id}:{context_str}"

        self._setup_sinks(log_to_console, log_to_file)
        self._logger = _logger.bind(component_id=self.component_id)

    def _setup_sinks(self, log_to_console: bool, log_to_file: bool) -> None:
        """Install the process-wide sinks exactly once."""
        if not hasattr(_logger, "_connector_console_setup"):
            _logger.remove()
            if log_to_console:
                _logger.add(
                    sys.stdout,
                    format=_CONSOLE_FORMAT,
                    level=self.log_level,
                    colorize=True,
                    filter=lambda record: bool(record["extra"].get("component_id")) and _format_source(record),
                    backtrace=True,
                    diagnose=False,
                )
            _logger._connector_console_setup = True

        if not log_to_file:
            return

        if not hasattr(_logger, "_connector_history_setup"):
            _logger.add(
                str(_logs_dir() / "connector_history.log"),
                format=_FILE_FORMAT,
                level="DEBUG",
                filter=_ensure_component,
                rotation="50 MB",
                retention=5,
                backtrace=False,
                diagnose=False,
                enqueue=True,
                catch=True,
            )
            _logger._connector_history_setup = True

        if not hasattr(_logger, "_connector_session_setup"):
            session_ts = datetime.now().strftime("%Y%m%d_%H%M%S")
            _logger.add(
                str(_logs_dir() / f"session_{session_ts}.log"),
                format=_FILE_FORMAT,
                level="DEBUG",
                filter=_ensure_component,
                backtrace=False,
                diagnose=False,
                enqueue=True,
                catch=True,
            )
            _logger._connector_session_setup = True

    def debug(self, message: str, **kwargs):
        """Log debug message."""
        self._logger.opt(depth=1).debug(message, **kwargs)

    def info(self, message: str, **kwargs):
        """Log info message."""
        self._logger.opt(depth=1).info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message."""
        self._logger.opt(depth=1).warning(message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log error message."""
        self._logger.opt(depth=1).error(message, **kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message."""
        self._logger.opt(depth=1).critical(message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log error message with the active exception's traceback."""
        self._logger.opt(depth=1, exception=True).error(message, **kwargs)

    def log(self, message: str, level: str = "INFO", **kwargs):
        """
        Log with a level chosen at runtime.

        Args:
            message: Log message
            level: DEBUG, INFO, WARNING, ERROR or CRITICAL (unknown -> INFO)
        """
        level = level.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            level = "INFO"
        self._logger.opt(depth=1).log(level, message, **kwargs)

    def with_context(self, **context) -> "UnifiedLogger":
        """Return a logger for the same component with extra context bound."""
        return get_logger(
            self.component_type.lower(),
            self.component_name.lower(),
            {**self.context, **context},
            log_level=self.log_level,
        )


def get_logger(
    component_type: str,
    component_name: str,
    context: Optional[Dict[str, Any]] = None,
    log_to_console: bool = True,
    log_level: Optional[str] = None,
) -> UnifiedLogger:
    """
    Factory function to create unified loggers.

    Args:
        component_type: Type of component (transport, stream, client, core)
        component_name: Name of the specific component
        context: Additional context
        log_to_console: Whether to log to console
        log_level: Log level (defaults to env LOG_LEVEL or INFO)

    Examples:
        logger = get_logger("transport", "rest")
        logger = get_logger("stream", "connection", {"conn": 1})
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")

    return UnifiedLogger(
        component_type=component_type,
        component_name=component_name,
        context=context,
        log_to_console=log_to_console,
        log_level=log_level,
        log_to_file=os.getenv("CONNECTOR_LOG_TO_FILE", "1") != "0",
    )


def get_transport_logger(name: str, **context) -> UnifiedLogger:
    """Get logger for REST transport components."""
    return get_logger("transport", name, context)


def get_stream_logger(name: str, **context) -> UnifiedLogger:
    """Get logger for streaming components."""
    return get_logger("stream", name, context)


def get_client_logger(name: str, **context) -> UnifiedLogger:
    """Get logger for the client facade."""
    return get_logger("client", name, context)


def get_core_logger(module_name: str, **context) -> UnifiedLogger:
    """Get logger for core utilities."""
    return get_logger("core", module_name, context)
