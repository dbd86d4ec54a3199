"""Logfire tracing for lending operations and MCP tools."""

import functools
import logging
from collections.abc import Callable
from contextlib import contextmanager
from datetime import datetime

import logfire

from .config import LendingConfig, get_config

logger = logging.getLogger(__name__)

_initialized = False


def initialize_observability(config: LendingConfig | None = None) -> None:
    """
    Configure logfire once per process.

    Spans are only exported when a LOGFIRE_TOKEN is present; without one they
    stay local, so development and tests need no account.
    """
    global _initialized  # noqa: PLW0603
    if _initialized:
        return

    config = config or get_config()
    logfire.configure(
        service_name=config.server_name,
        service_version=config.server_version,
        environment="development" if config.is_development else "production",
        send_to_logfire="if-token-present" if config.enable_tracing else False,
        console=False,
    )
    _initialized = True
    logger.debug("Observability initialized (tracing=%s)", config.enable_tracing)


@contextmanager
def trace_lending_operation(operation: str, **attributes):
    """Span around one engine operation; failures are recorded on the span."""
    with logfire.span(f"lending.{operation}", lending_operation=operation, **attributes) as span:
        try:
            yield span
        except Exception as e:
            span.set_attribute("lending.error", type(e).__name__)
            span.set_attribute("lending.error_message", str(e))
            raise


def trace_tool(tool_name: str):
    """Decorator to trace MCP tool execution."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(arguments: dict, *args, **kwargs):
            with logfire.span(f"tool.execution.{tool_name}", tool_name=tool_name) as span:
                start_time = datetime.now()
                for key, value in arguments.items():
                    if isinstance(value, str | int | float | bool):
                        span.set_attribute(f"input.{key}", value)

                try:
                    result = await func(arguments, *args, **kwargs)
                except Exception as e:
                    span.set_attribute("tool.success", False)
                    span.set_attribute("tool.error", str(e))
                    raise

                span.set_attribute("tool.success", not result.get("isError", False))
                span.set_attribute(
                    "tool.duration_ms", (datetime.now() - start_time).total_seconds() * 1000
                )
                return result

        return wrapper

    return decorator
