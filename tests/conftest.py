"""pytest configuration and fixtures for gguf-gateway tests.

Fixtures build a gateway app wired to FakeEngine instances over a temporary
models directory, so no native library or real weights are needed.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Generator
from pathlib import Path

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from gguf_gateway.core.logging import reset_logging
from tests.unit.providers.fake_engine import ENGINE_OPTIONS, MODEL_FILES, FakeEngine


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (may require models)")


# =============================================================================
# Environment Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def test_env_vars() -> dict[str, str]:
    return {
        "GGUF_GATEWAY_PORT": "8000",
        "GGUF_GATEWAY_HOST": "127.0.0.1",
        "GGUF_GATEWAY_LOG_LEVEL": "DEBUG",
        "GGUF_GATEWAY_MODELS_DIR": "test-models",
        "GGUF_GATEWAY_CONFIG_DIR": "test-config",
        "GGUF_GATEWAY_FORCE_BACKEND": "cpu",
    }


@pytest.fixture
def mock_env(test_env_vars: dict[str, str], monkeypatch: pytest.MonkeyPatch) -> None:
    for key, value in test_env_vars.items():
        monkeypatch.setenv(key, value)


@pytest.fixture(autouse=True)
def _isolated_logging() -> Generator[None, None, None]:
    reset_logging()
    yield
    reset_logging()


# =============================================================================
# Model Fixtures
# =============================================================================


@pytest.fixture
def models_dir(tmp_path: Path) -> Path:
    """Temporary models directory: one sub-directory per test model."""
    directory = tmp_path / "models"
    for model, filename in MODEL_FILES.items():
        (directory / model).mkdir(parents=True)
        (directory / model / filename).write_bytes(b"GGUF" + b"\x00" * 16)
    return directory


@pytest.fixture
def created_engines() -> dict[str, FakeEngine]:
    """Engines built by fake_engine_factory, keyed by file name."""
    return {}


@pytest.fixture
def fake_engine_factory(
    created_engines: dict[str, FakeEngine],
) -> Callable[[str], FakeEngine]:
    def create(model_path: str) -> FakeEngine:
        name = Path(model_path).name
        engine = FakeEngine(**ENGINE_OPTIONS.get(name, {}))
        created_engines[name] = engine
        return engine

    return create


# =============================================================================
# App Fixtures
# =============================================================================


@pytest.fixture
def app(models_dir: Path, fake_engine_factory: Callable[[str], FakeEngine]) -> FastAPI:
    """Gateway app with routers, error handlers and a fake-engine dispatcher."""
    from gguf_gateway.api.error_handlers import register_exception_handlers
    from gguf_gateway.api.routes.health import router as health_router
    from gguf_gateway.api.routes.ollama import router as ollama_router
    from gguf_gateway.api.routes.openai import router as openai_router
    from gguf_gateway.services.catalog import ModelCatalog
    from gguf_gateway.services.dispatcher import CompletionDispatcher
    from gguf_gateway.services.engine_registry import EngineRegistry

    test_app = FastAPI(title="gguf-gateway-test")
    test_app.include_router(health_router)
    test_app.include_router(openai_router, prefix="/v1")
    test_app.include_router(ollama_router, prefix="/api")
    register_exception_handlers(test_app)

    catalog = ModelCatalog(models_dir)
    registry = EngineRegistry(fake_engine_factory)
    test_app.state.catalog = catalog
    test_app.state.registry = registry
    test_app.state.dispatcher = CompletionDispatcher(
        catalog, registry, default_max_tokens=128, default_temperature=0.6
    )
    return test_app


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="https://testserver") as client:
        yield client
