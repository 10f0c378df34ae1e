"""Error handlers for FastAPI exception handling.

Errors are written in the envelope of the protocol the client speaks,
chosen by request path:

OpenAI (/v1/..., and anything that is not /api/...)::

    {"error": {"message": "...", "type": "invalid_request_error",
               "param": "model", "code": "model_not_found"}}

Ollama (/api/...)::

    {"error": "model 'x' not found"}

Status mapping:
    ValidationError 400, CapabilityError 403, ModelNotFoundError 404,
    BackendUnavailableError 503, every other error 500.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from gguf_gateway.core.constants import OLLAMA_PATH_PREFIX
from gguf_gateway.core.exceptions import (
    BackendUnavailableError,
    CapabilityError,
    ErrorCode,
    GatewayError,
    ModelNotFoundError,
    ValidationError,
)
from gguf_gateway.core.logging import get_logger


logger = get_logger(__name__)

TYPE_INVALID_REQUEST = "invalid_request_error"
TYPE_SERVER_ERROR = "server_error"


# =============================================================================
# Error Response Models (Pydantic)
# =============================================================================


class OpenAIErrorDetail(BaseModel):
    message: str
    type: str
    param: str | None = None
    code: str | None = None


class OpenAIErrorResponse(BaseModel):
    error: OpenAIErrorDetail


class OllamaErrorResponse(BaseModel):
    error: str


# =============================================================================
# Status Code Mapping
# =============================================================================


def get_status_code_for_error(error: Exception) -> int:
    """Determine HTTP status code based on exception type."""
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, CapabilityError):
        return 403
    if isinstance(error, ModelNotFoundError):
        return 404
    if isinstance(error, BackendUnavailableError):
        return 503
    return 500


def _param_for(error: Exception) -> str | None:
    if isinstance(error, ValidationError):
        return error.param
    if isinstance(error, (ModelNotFoundError, CapabilityError)):
        return "model"
    return None


def is_ollama_request(request: Request) -> bool:
    return request.url.path.startswith(OLLAMA_PATH_PREFIX)


# =============================================================================
# Error Response Builder
# =============================================================================


def build_error_response(
    request: Request,
    message: str,
    status_code: int,
    code: str | None = None,
    param: str | None = None,
) -> JSONResponse:
    """Build a JSONResponse in the envelope of the request's protocol."""
    content: dict[str, Any]
    if is_ollama_request(request):
        content = OllamaErrorResponse(error=message).model_dump()
    else:
        content = OpenAIErrorResponse(
            error=OpenAIErrorDetail(
                message=message,
                type=TYPE_INVALID_REQUEST if status_code < 500 else TYPE_SERVER_ERROR,
                param=param,
                code=code,
            )
        ).model_dump()
    return JSONResponse(status_code=status_code, content=content)


# =============================================================================
# Exception Handlers
# =============================================================================


async def gateway_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle GatewayError and its subclasses."""
    if not isinstance(exc, GatewayError):
        return await generic_error_handler(request, exc)

    status_code = get_status_code_for_error(exc)
    log = logger.warning if status_code < 500 else logger.error
    log(
        "Request failed",
        path=request.url.path,
        status_code=status_code,
        error_code=exc.error_code,
        error=exc.message,
        cause=repr(exc.__cause__) if exc.__cause__ else None,
    )
    return build_error_response(
        request,
        exc.message,
        status_code,
        code=exc.error_code,
        param=_param_for(exc),
    )


async def request_validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Report malformed request bodies as 400 instead of FastAPI's 422."""
    errors = exc.errors() if isinstance(exc, RequestValidationError) else []
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
        param = location or None
    else:
        message, param = str(exc), None
    return build_error_response(
        request,
        message,
        400,
        code=ErrorCode.VALIDATION_ERROR.value,
        param=param,
    )


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unexpected exceptions: 500 with the exception text (trusted deployment)."""
    logger.exception("Unhandled error", path=request.url.path, error=str(exc))
    return build_error_response(
        request,
        f"Internal server error: {exc!s}",
        500,
        code=ErrorCode.GATEWAY_ERROR.value,
    )


# =============================================================================
# Handler Registration
# =============================================================================


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""
    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)
