"""Error handling for the settlement negotiator.

Provides the custom exception hierarchy and error handling decorators.
Nothing here retries: every failure is either raised to the caller or
degraded locally.
"""

from functools import wraps
from typing import Any, Callable, Optional, Type
from loguru import logger


# Custom Exception Classes

class NegotiatorError(Exception):
    """Base exception for all negotiator errors."""
    pass


class ValidationError(NegotiatorError):
    """Raised when a required field is empty or a value is unsupported."""
    pass


class StoreError(NegotiatorError):
    """Raised when the backing store rejects a read or write."""
    pass


class SessionNotFoundError(NegotiatorError):
    """Raised when a session identifier does not exist."""
    pass


class TermNotFoundError(NegotiatorError):
    """Raised when a clause does not exist in the given session."""
    pass


class SessionClosedError(NegotiatorError):
    """Raised when a write targets a ratified session."""
    pass


class InvalidTransitionError(NegotiatorError):
    """Raised when a clause status change is not a defined transition."""
    pass


class VersionConflictError(NegotiatorError):
    """Raised when a clause was updated since the caller last saw it."""
    pass


class ClassifierError(NegotiatorError):
    """Raised when the translation/intent classifier fails."""

    status_code = 500


class RateLimitedError(ClassifierError):
    """Raised when the model provider rate-limits the classifier."""

    status_code = 429


class QuotaExceededError(ClassifierError):
    """Raised when the model provider requires payment or quota is exhausted."""

    status_code = 402


def handle_errors(
    error_type: Type[NegotiatorError],
    default_return: Any = None,
    reraise: bool = True
) -> Callable:
    """Decorator to handle errors and convert them to custom exception types.

    Args:
        error_type: Custom exception type to raise
        default_return: Default value to return on error (if not reraising)
        reraise: Whether to reraise the exception after logging

    Returns:
        Decorated function with error handling
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            try:
                return func(*args, **kwargs)

            except NegotiatorError:
                # Already a custom exception, just reraise
                raise

            except Exception as e:
                logger.error(
                    f"Error in {func.__name__}",
                    error=str(e),
                    error_type=type(e).__name__
                )

                if reraise:
                    raise error_type(f"Error in {func.__name__}: {str(e)}") from e
                else:
                    return default_return

        return wrapper
    return decorator


def graceful_degradation(
    fallback_func: Optional[Callable] = None,
    exceptions: tuple[Type[Exception], ...] = (ClassifierError,)
) -> Callable:
    """Decorator to provide graceful degradation on failure.

    Only the listed exception types are degraded; anything else propagates.

    Args:
        fallback_func: Optional fallback called with the same arguments
        exceptions: Exception types that trigger the fallback

    Returns:
        Decorated function with graceful degradation
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            try:
                return func(*args, **kwargs)

            except exceptions as e:
                logger.warning(
                    f"Function {func.__name__} failed, degrading gracefully",
                    error=str(e),
                    error_type=type(e).__name__
                )

                if fallback_func:
                    return fallback_func(*args, **kwargs)
                return None

        return wrapper
    return decorator
