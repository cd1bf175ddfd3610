"""Turning exceptions into short messages for queue items, scripts and logs.

Three classes of failure are told apart everywhere in this module:

* ``ValidationError`` from pydantic input models (bad caller input),
* ``ReelcastException`` subclasses (expected failures, logged as warnings),
* anything else (bugs or environment trouble, logged as errors).
"""
from functools import wraps
from typing import Callable, Any, Optional, Tuple

from pydantic import ValidationError

from domain.exceptions import ReelcastException
from infrastructure.logger import get_logger

logger = get_logger(__name__)

EXPECTED = "expected"
INVALID = "invalid"
UNEXPECTED = "unexpected"


def _func_name(func: Callable) -> str:
    return getattr(func, "__name__", "lambda")


def _classify(error: BaseException) -> str:
    if isinstance(error, ValidationError):
        return INVALID
    if isinstance(error, ReelcastException):
        return EXPECTED
    return UNEXPECTED


def _format_validation_error(error: ValidationError) -> str:
    """One line for a single problem, a bulleted list per field otherwise."""
    problems = error.errors()
    if len(problems) == 1:
        return f"Validation error: {problems[0]['msg']}"

    lines = ["Validation error:"]
    lines.extend(
        f"- {problem['loc'][0] if problem['loc'] else 'input'}: {problem['msg']}"
        for problem in problems
    )
    return "\n".join(lines)


def _log(error: BaseException, where: str, traceback: bool = True) -> None:
    kind = _classify(error)
    prefix = f"{where}: " if where else ""
    if kind == INVALID:
        logger.warning(f"{prefix}Validation failed - {error}")
    elif kind == EXPECTED:
        logger.warning(f"{prefix}{error}")
    elif traceback:
        logger.error(f"Unexpected error in {where or 'call'}: {error}", exc_info=True)
    else:
        logger.error(f"Unexpected error in {where or 'call'}: {type(error).__name__}: {error}")


def handle_errors(
    default_message: str = "An error occurred",
    log_traceback: bool = True,
    return_tuple: bool = False
):
    """
    Decorator for entry points (scripts, command handlers) that must never raise.

    Args:
        default_message: Shown in front of unexpected errors
        log_traceback: Log the traceback of unexpected errors
        return_tuple: Return ``(result, error)`` instead of ``result`` / ``error``

    Usage:
        @handle_errors("Could not create project")
        def create_project(self, name: str):
            return self.registry.create_project(name)
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _log(e, func.__name__, traceback=log_traceback)
                kind = _classify(e)
                if kind == INVALID:
                    message = _format_validation_error(e)
                elif kind == EXPECTED:
                    message = f"Error: {e}"
                else:
                    message = f"Error: {default_message} ({type(e).__name__}: {e})"
                return (None, message) if return_tuple else message

            if return_tuple and not isinstance(result, tuple):
                return (result, None)
            return result

        return wrapper
    return decorator


def safe_execute(
    func: Callable,
    error_message: str = "Operation failed",
    *args,
    **kwargs
) -> Tuple[Optional[Any], Optional[str]]:
    """
    Call ``func`` and return ``(result, None)`` or ``(None, message)``.

    Usage:
        project, error = safe_execute(
            lambda: registry.create_project(name),
            error_message="Could not create project"
        )
    """
    try:
        return (func(*args, **kwargs), None)
    except Exception as e:
        _log(e, _func_name(func))
        kind = _classify(e)
        if kind == INVALID:
            return (None, _format_validation_error(e))
        if kind == EXPECTED:
            return (None, f"{error_message}: {e}")
        return (None, f"{error_message}: {type(e).__name__}: {e}")


def format_error(error: Exception) -> str:
    """Message stored in the ``error`` field of failed queue items."""
    kind = _classify(error)
    if kind == INVALID:
        return _format_validation_error(error)
    if kind == EXPECTED:
        return str(error) or type(error).__name__
    return f"{type(error).__name__}: {error}"


def log_and_format_error(error: Exception, context: str = "") -> str:
    """Log ``error`` at the level its class deserves and return its message."""
    _log(error, context)
    return format_error(error)


__all__ = [
    "handle_errors",
    "safe_execute",
    "format_error",
    "log_and_format_error",
]
