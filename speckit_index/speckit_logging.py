"""Logging and observability utilities for the spec index.

Structured logging under the ``speckit`` logger hierarchy, timing of index
operations, and observability hooks fired when the index is refreshed or a
maturity record changes.
"""

from __future__ import annotations

import json
import time
import logging as std_logging
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

ROOT_LOGGER_NAME = "speckit"


def setup_logging(log_level: Union[str, int] = std_logging.INFO, log_file: Optional[Path] = None) -> None:
    """Setup structured logging for the spec index."""

    logger = std_logging.getLogger(ROOT_LOGGER_NAME)
    if isinstance(log_level, str):
        log_level = log_level.upper()
    logger.setLevel(log_level)

    # Re-running setup replaces the previous handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    detailed_formatter = std_logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # MCP stdio transport owns stdout, so the console handler writes to stderr
    console_handler = std_logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(detailed_formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = std_logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(std_logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.info("Spec index logging initialized")


def get_logger(component: str) -> std_logging.Logger:
    """Return the logger of an index component, e.g. 'parser'."""
    return std_logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JsonFormatter(std_logging.Formatter):
    """JSON-lines formatter for structured logging."""

    def format(self, record: std_logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_entry.update(extra_fields)

        return json.dumps(log_entry, default=str)


class PerformanceMonitor:
    """Keep duration metrics of index operations in memory."""

    def __init__(self):
        self.metrics: Dict[str, List[Dict[str, Any]]] = {}

    def record_metric(self, name: str, value: Any, tags: Optional[Dict[str, str]] = None) -> None:
        """Record a performance metric."""
        metric = {
            "timestamp": _utc_now(),
            "name": name,
            "value": value,
            "tags": tags or {},
        }
        self.metrics.setdefault(name, []).append(metric)

        get_logger("performance").debug(
            f"Metric recorded: {name}={value}", extra={"extra_fields": metric}
        )

    def get_metrics(self, name: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        """Get recorded metrics."""
        if name:
            return {name: list(self.metrics.get(name, []))}
        return {key: list(values) for key, values in self.metrics.items()}

    def reset(self) -> None:
        self.metrics.clear()


performance_monitor = PerformanceMonitor()


def log_performance(operation_name: str):
    """Decorator recording the duration of an operation, failed or not."""

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger("performance")
            start_time = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.perf_counter() - start_time
                performance_monitor.record_metric(
                    f"{operation_name}_duration",
                    duration,
                    {"status": "error", "error_type": type(e).__name__},
                )
                logger.error(
                    f"Failed operation: {operation_name} after {duration:.3f}s - {e}",
                    extra={"extra_fields": {
                        "operation": operation_name,
                        "duration": duration,
                        "status": "error",
                        "error_type": type(e).__name__,
                    }},
                )
                raise

            duration = time.perf_counter() - start_time
            performance_monitor.record_metric(
                f"{operation_name}_duration", duration, {"status": "success"}
            )
            logger.debug(
                f"Completed operation: {operation_name} in {duration:.3f}s",
                extra={"extra_fields": {
                    "operation": operation_name,
                    "duration": duration,
                    "status": "success",
                }},
            )
            return result

        return wrapper

    return decorator


@contextmanager
def log_operation(operation_name: str, **extra_fields):
    """Context manager to log operations with custom fields."""
    logger = get_logger("operations")
    start_time = time.perf_counter()

    logger.debug(f"Starting operation: {operation_name}", extra={"extra_fields": {
        "operation": operation_name,
        "status": "started",
        **extra_fields,
    }})

    try:
        yield
    except Exception as e:
        duration = time.perf_counter() - start_time
        logger.error(f"Failed operation: {operation_name} after {duration:.3f}s - {e}", extra={"extra_fields": {
            "operation": operation_name,
            "status": "failed",
            "duration": duration,
            "error_type": type(e).__name__,
            "error_message": str(e),
            **extra_fields,
        }})
        raise

    duration = time.perf_counter() - start_time
    logger.info(f"Completed operation: {operation_name} in {duration:.3f}s", extra={"extra_fields": {
        "operation": operation_name,
        "status": "completed",
        "duration": duration,
        **extra_fields,
    }})


class ObservabilityHooks:
    """Callbacks fired on index events such as a maturity update."""

    def __init__(self):
        self.hooks: Dict[str, List[Callable[..., Any]]] = {}
        self.logger = get_logger("observability")

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        """Register a callback for a specific event type."""
        self.hooks.setdefault(event_type, []).append(callback)
        self.logger.debug(f"Registered hook for event: {event_type}")

    def unregister_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        """Remove a previously registered callback; unknown callbacks are ignored."""
        callbacks = self.hooks.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def trigger_hooks(self, event_type: str, **data) -> None:
        """Trigger all callbacks for a specific event type.

        A failing callback is logged and does not stop the others.
        """
        callbacks = list(self.hooks.get(event_type, []))
        if not callbacks:
            return
        self.logger.debug(f"Triggering {len(callbacks)} hooks for event: {event_type}")
        for hook in callbacks:
            try:
                hook(**data)
            except Exception as e:
                self.logger.error(f"Hook failed for event {event_type}: {e}")

    def log_index_event(self, event_type: str, feature_name: Optional[str] = None, **data) -> None:
        """Log an index event and trigger its hooks."""
        event_data = {
            "timestamp": _utc_now(),
            "event_type": event_type,
            "feature_name": feature_name,
            **data,
        }

        self.logger.info(f"Index event: {event_type}", extra={"extra_fields": event_data})

        hook_data = {k: v for k, v in event_data.items() if k != "event_type"}
        self.trigger_hooks(event_type, **hook_data)


observability_hooks = ObservabilityHooks()


def log_error_with_context(error: Exception, context: Dict[str, Any], **extra_fields) -> None:
    """Log an error with rich context information."""
    logger = get_logger("errors")

    error_data = {
        "timestamp": _utc_now(),
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context,
        **extra_fields,
    }

    logger.error(
        f"Error in {context.get('operation', 'unknown operation')}: {error}",
        extra={"extra_fields": error_data},
        exc_info=error,
    )


# Convenience functions for index events
def log_index_refreshed(feature_count: int, **extra_fields) -> None:
    """Log a completed refresh of the spec index."""
    observability_hooks.log_index_event("index_refreshed", feature_count=feature_count, **extra_fields)


def log_maturity_updated(feature_name: str, target: str, level: str, **extra_fields) -> None:
    """Log a changed maturity level."""
    observability_hooks.log_index_event(
        "maturity_updated", feature_name=feature_name, target=target, level=level, **extra_fields
    )


def log_test_outcome(feature_name: str, identifier: str, passed: bool, **extra_fields) -> None:
    """Log a recorded test run outcome."""
    observability_hooks.log_index_event(
        "test_outcome_recorded", feature_name=feature_name, identifier=identifier, passed=passed, **extra_fields
    )


def log_test_directory_set(feature_name: str, test_directory: Optional[str], **extra_fields) -> None:
    """Log a changed test directory of a feature."""
    observability_hooks.log_index_event(
        "test_directory_set", feature_name=feature_name, test_directory=test_directory, **extra_fields
    )


def log_cache_cleared(feature_name: Optional[str] = None, **extra_fields) -> None:
    """Log an invalidation of the maturity cache."""
    observability_hooks.log_index_event("maturity_cache_cleared", feature_name=feature_name, **extra_fields)
