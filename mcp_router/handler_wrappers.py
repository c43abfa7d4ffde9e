# handler_wrappers.py
"""Shared error handling for gateway tool handlers.

Error Handling Strategy:
    Gateway tool functions can raise HandlerError for structured errors with
    hints, or let a RouterError escape from the router. The _error_handler
    wrapper catches both, formats the message with hints/context, and
    re-raises as a plain Exception. FastMCP catches that exception and sets
    isError=True in the MCP response, so the client sees the formatted text.
"""

from typing import Any, Awaitable, Callable, Optional
from functools import wraps
import logging

from .errors import RouterError

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------------------
# HandlerError - Custom exception for handler failures with structured error info
# ------------------------------------------------------------------------------
# Raise this in gateway tool functions to return a clean error to the AI client.
# - message: What went wrong
# - hint: Actionable suggestion for the AI (optional)
# - **data: Extra context like service_id, tool_name, etc. (optional)
#
# Example: raise HandlerError("Service not found", hint="Call list_services", service_id="gti")
# ------------------------------------------------------------------------------
class HandlerError(Exception):
    """Structured error for gateway tool handlers.

    Args:
        message: Description of what went wrong
        hint: Actionable suggestion for the AI (optional)
        **data: Extra context like service_id, tool_name, etc. (optional)

    Example:
        raise HandlerError(
            "Service not found",
            hint="Use list_services to see available services",
            service_id="gti"
        )
    """
    def __init__(self, message: str, hint: Optional[str] = None, **data: Any):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.data = data


def format_error(message: str, hint: Optional[str] = None, data: Optional[dict] = None) -> str:
    """Build the "message (hint: ...) (context: ...)" text shown to the client."""
    msg = message
    if hint:
        msg += f" (hint: {hint})"
    if data:
        msg += f" (context: {data})"
    return msg


# ------------------------------------------------------------------------------
# _error_handler - Outermost wrapper that catches exceptions
# ------------------------------------------------------------------------------
# HandlerError -> message with hint and context
# RouterError  -> message with JSON-RPC code and context
# Anything else is logged with its traceback and re-raised unchanged.
# ------------------------------------------------------------------------------
def _error_handler(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """Wrap an async handler to catch exceptions and format error messages.

    Args:
        func: The coroutine function to wrap

    Returns:
        Wrapped coroutine function that formats and re-raises exceptions
    """
    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await func(*args, **kwargs)
        except HandlerError as e:
            logger.warning("Handler error: %s (hint: %s)", e.message, e.hint)
            raise Exception(format_error(e.message, e.hint, e.data)) from e
        except RouterError as e:
            logger.warning("Router error in handler: %s (code %s)", e.message, e.code)
            raise Exception(format_error(f"{e.message} [{e.code}]", data=e.data)) from e
        except Exception as e:
            logger.exception("Unexpected handler error: %s", e)
            raise

    return wrapper
