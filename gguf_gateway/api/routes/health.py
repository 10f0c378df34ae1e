"""Health check routes.

/health is liveness. /health/ready reports the native backend and the
engines loaded so far; it answers 503 until a backend has loaded.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from gguf_gateway import __version__


if TYPE_CHECKING:
    from gguf_gateway.providers.backends.selector import BackendSelector
    from gguf_gateway.services.engine_registry import EngineRegistry


STATUS_OK = "ok"
STATUS_READY = "ready"
STATUS_NOT_READY = "not_ready"
SERVICE_NAME = "gguf-gateway"
REASON_NOT_INITIALIZED = "Backend selector not initialized"
REASON_BACKEND_UNAVAILABLE = "No native backend loaded"


class HealthResponse(BaseModel):
    status: str = Field(default=STATUS_OK, examples=["ok"])
    service: str = Field(default=SERVICE_NAME)
    version: str = Field(default=__version__)


class ReadinessResponse(BaseModel):
    status: str = Field(description="Readiness status", examples=["ready", "not_ready"])
    backend: dict[str, Any] | None = Field(
        default=None, description="Selected native backend"
    )
    loaded_models: list[str] = Field(
        default_factory=list, description="Model files with a ready engine"
    )
    reason: str | None = Field(default=None, description="Reason for not ready status")


router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness check",
)
async def health_check() -> HealthResponse:
    return HealthResponse()


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "Backend loaded", "model": ReadinessResponse},
        503: {"description": "Backend not loaded", "model": ReadinessResponse},
    },
    summary="Readiness check",
)
async def readiness_check(request: Request) -> JSONResponse:
    """Readiness probe.

    Returns:
        200 with backend and loaded models, or 503 with a reason.
    """
    selector: BackendSelector | None = getattr(request.app.state, "backend", None)
    registry: EngineRegistry | None = getattr(request.app.state, "registry", None)

    descriptor = selector.descriptor if selector is not None else None
    if descriptor is None:
        response = ReadinessResponse(status=STATUS_NOT_READY, reason=REASON_NOT_INITIALIZED)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(exclude_none=True),
        )

    loaded_models = registry.loaded_models() if registry is not None else []
    if not descriptor.loaded:
        response = ReadinessResponse(
            status=STATUS_NOT_READY,
            backend=descriptor.to_dict(),
            loaded_models=loaded_models,
            reason=REASON_BACKEND_UNAVAILABLE,
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(exclude_none=True),
        )

    response = ReadinessResponse(
        status=STATUS_READY,
        backend=descriptor.to_dict(),
        loaded_models=loaded_models,
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=response.model_dump(exclude_none=True),
    )
