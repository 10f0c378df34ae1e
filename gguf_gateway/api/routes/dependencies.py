"""Request-scoped accessors for objects built in the application lifespan."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

from gguf_gateway.core.exceptions import BackendUnavailableError
from gguf_gateway.core.logging import new_correlation_id


if TYPE_CHECKING:
    from gguf_gateway.services.dispatcher import CompletionDispatcher


def get_dispatcher(request: Request) -> CompletionDispatcher:
    """Dispatcher from app state.

    Raises:
        BackendUnavailableError: The lifespan has not finished startup.
    """
    dispatcher: CompletionDispatcher | None = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise BackendUnavailableError("Completion dispatcher not initialized")
    return dispatcher


def get_request_id(request: Request) -> str:
    """Request id assigned by the middleware (fresh one outside it)."""
    request_id: str | None = getattr(request.state, "request_id", None)
    return request_id or new_correlation_id()
