"""Structured logging for gguf-gateway.

JSON log lines via structlog, configured once at startup. Every line carries
the request id of the HTTP request that produced it (when there is one), so a
streaming response, its engine lookup and its native load can be correlated.

Patterns applied:
- Singleton _configured flag prevents reconfiguration
- Request id propagated through contextvars (safe across asyncio tasks)
- Console rendering for local development, JSON everywhere else
"""

import contextvars
import sys
import uuid
from typing import Any, TextIO

import structlog
from structlog.types import EventDict


_configured: bool = False

_LEVELS = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
    "CRITICAL": 50,
}


# =============================================================================
# Request Correlation
# =============================================================================
_correlation_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)


def new_correlation_id() -> str:
    """Generate a fresh request id."""
    return uuid.uuid4().hex


def set_correlation_id(correlation_id: str | None) -> contextvars.Token:
    """Bind a request id to the current context.

    Returns:
        Token that restores the previous value via reset_correlation_id().
    """
    return _correlation_id_var.set(correlation_id)


def reset_correlation_id(token: contextvars.Token) -> None:
    _correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return _correlation_id_var.get()


def add_correlation_id(
    _logger: object, _method_name: str, event_dict: EventDict
) -> EventDict:
    """structlog processor: copy the current request id into the event."""
    correlation_id = get_correlation_id()
    if correlation_id is not None:
        event_dict.setdefault("correlation_id", correlation_id)
    return event_dict


# =============================================================================
# Configuration
# =============================================================================
def configure_logging(
    level: str = "INFO",
    stream: TextIO | None = None,
    force: bool = False,
    json_output: bool = True,
) -> None:
    """Configure structlog once for the process.

    Args:
        level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        stream: Output stream. Defaults to sys.stdout.
        force: Reconfigure even if already configured (tests only).
        json_output: Render JSON lines; False uses the console renderer.
    """
    global _configured

    if _configured and not force:
        return

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        add_correlation_id,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            _LEVELS.get(level.upper(), 20)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stdout),
        cache_logger_on_first_use=False,
    )

    _configured = True


def reset_logging() -> None:
    """Forget the configured state so a test can reconfigure."""
    global _configured
    _configured = False
    structlog.contextvars.clear_contextvars()


def get_logger(name: str) -> Any:
    """Return a bound logger tagged with the module name.

    Falls back to default configuration when configure_logging() has not
    run yet (imports at module load time, tests).
    """
    configure_logging()
    return structlog.get_logger().bind(logger=name)
