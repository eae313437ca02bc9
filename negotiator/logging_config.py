"""Logging configuration using Loguru for structured logging.

Provides session-aware logging with JSON formatting, rotation, and retention policies.
"""

import sys
import time
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Optional
from loguru import logger


def setup_logging(
    log_dir: str = "logs",
    level: str = "INFO",
    rotation: str = "100 MB",
    retention: str = "30 days",
    compression: str = "zip"
) -> None:
    """Configure Loguru logging with console, text, JSON and error sinks.

    Args:
        log_dir: Directory for log files
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        rotation: When to rotate log files
        retention: How long to keep old logs
        compression: Compression format for rotated logs
    """
    logger.remove()

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    # Console handler with colored output
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>",
        level=level,
        colorize=True
    )

    logger.add(
        log_path / "negotiator_{time}.log",
        format="{time} | {level} | {name}:{function}:{line} | {message}",
        level=level,
        rotation=rotation,
        retention=retention,
        compression=compression
    )

    # JSON structured log for parsing and analysis
    logger.add(
        log_path / "negotiator_json_{time}.log",
        level=level,
        rotation=rotation,
        retention=retention,
        compression=compression,
        serialize=True
    )

    # Per-session activity log
    def session_format(record):
        session_id = record["extra"].get("session_id", "unknown")
        component = record["extra"].get("component", "unknown")
        return f"{record['time']} | {record['level'].name} | {session_id} | {component} | {record['message']}\n"

    logger.add(
        log_path / "sessions_{time}.log",
        format=session_format,
        level="INFO",
        rotation=rotation,
        retention=retention,
        compression=compression,
        filter=lambda record: "session_id" in record["extra"]
    )

    # Error-only log file
    logger.add(
        log_path / "errors_{time}.log",
        format="{time} | {level} | {name}:{function}:{line} | {message}",
        level="ERROR",
        rotation=rotation,
        retention=retention,
        compression=compression
    )

    logger.info("Logging system initialized", log_dir=log_dir, level=level)


def get_session_logger(session_id: str, component: Optional[str] = None):
    """Get a logger bound to a negotiation session and optionally a component.

    Args:
        session_id: Negotiation session identifier
        component: Optional component name (synchronizer, translator, ...)

    Returns:
        Logger instance with session context
    """
    context = {"session_id": session_id}
    if component:
        context["component"] = component
    return logger.bind(**context)


def log_operation(operation: str) -> Callable:
    """Decorator to log a negotiation operation with timing.

    The session id is taken from a `ctx` keyword or the first positional
    argument after `self` when it carries a `session_id` attribute.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            ctx = kwargs.get("ctx") or (args[1] if len(args) > 1 else None)
            session_id = getattr(ctx, "session_id", "unknown")
            op_logger = get_session_logger(session_id, operation)

            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                op_logger.warning(
                    f"{operation} failed",
                    error=str(e),
                    error_type=type(e).__name__
                )
                raise

            op_logger.debug(
                f"{operation} completed",
                duration_seconds=round(time.time() - start_time, 3)
            )
            return result

        return wrapper
    return decorator
