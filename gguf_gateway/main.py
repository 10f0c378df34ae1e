"""FastAPI application entrypoint for gguf-gateway.

Patterns applied:
- asynccontextmanager lifespan (not the deprecated @app.on_event)
- configure_logging() called ONCE in lifespan startup
- Backend selected once at startup, before any engine exists
- Every engine disposed on shutdown
- Docs disabled in production
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response

from gguf_gateway import __version__
from gguf_gateway.api.error_handlers import register_exception_handlers
from gguf_gateway.api.routes.health import router as health_router
from gguf_gateway.api.routes.ollama import router as ollama_router
from gguf_gateway.api.routes.openai import router as openai_router
from gguf_gateway.core.config import get_settings
from gguf_gateway.core.constants import REQUEST_ID_HEADER
from gguf_gateway.core.logging import (
    configure_logging,
    get_logger,
    new_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from gguf_gateway.providers.backends.selector import BackendSelector
from gguf_gateway.providers.llamacpp import llamacpp_engine_factory
from gguf_gateway.services.catalog import build_catalog
from gguf_gateway.services.dispatcher import CompletionDispatcher
from gguf_gateway.services.engine_registry import EngineRegistry


# =============================================================================
# Application Metadata
# =============================================================================
APP_NAME = "gguf-gateway"
APP_DESCRIPTION = "Local GGUF inference gateway with OpenAI and Ollama compatible APIs"


# =============================================================================
# Lifespan
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()

    configure_logging(level=settings.log_level)
    logger = get_logger(__name__)
    logger.info(
        "Application starting",
        service=settings.service_name,
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    # configure() records load failures instead of raising
    backend = BackendSelector()
    descriptor = backend.configure(settings)

    catalog = build_catalog(settings.models_dir, settings.config_dir)
    registry = EngineRegistry(llamacpp_engine_factory(settings, backend), backend=backend)

    app.state.backend = backend
    app.state.catalog = catalog
    app.state.registry = registry
    app.state.dispatcher = CompletionDispatcher(
        catalog,
        registry,
        default_max_tokens=settings.default_max_tokens,
        default_temperature=settings.default_temperature,
    )
    app.state.initialized = True

    logger.info(
        "Application ready",
        backend=descriptor.name,
        backend_loaded=descriptor.loaded,
        library_path=descriptor.library_path,
    )

    yield

    logger.info("Application shutting down", service=settings.service_name)
    await registry.dispose_all()
    app.state.initialized = False


# =============================================================================
# FastAPI Application Instance
# =============================================================================
settings = get_settings()

app = FastAPI(
    title=APP_NAME,
    description=APP_DESCRIPTION,
    version=__version__,
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
    lifespan=lifespan,
)


# =============================================================================
# Request Id Middleware
# =============================================================================
@app.middleware("http")
async def request_id_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    request_id = new_correlation_id()
    request.state.request_id = request_id
    token = set_correlation_id(request_id)
    try:
        if settings.log_request_bodies and request.method == "POST":
            body = await request.body()
            get_logger(__name__).debug(
                "Request body", path=request.url.path, body=body.decode("utf-8", "replace")
            )
        response = await call_next(request)
    finally:
        reset_correlation_id(token)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


# =============================================================================
# Routers and Exception Handlers
# =============================================================================
app.include_router(health_router)
app.include_router(openai_router, prefix="/v1")
app.include_router(ollama_router, prefix="/api")

register_exception_handlers(app)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
