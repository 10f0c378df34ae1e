"""Tests for the application entrypoint: lifespan wiring and middleware."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from gguf_gateway.core.config import Settings
from gguf_gateway.providers.backends.selector import BackendDescriptor


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        models_dir=str(tmp_path / "models"),
        config_dir=str(tmp_path / "config"),
        force_backend="cpu",
    )


@pytest.fixture
def selector() -> MagicMock:
    selector = MagicMock(name="BackendSelector")
    selector.configure.return_value = BackendDescriptor(
        name="cpu", library_path="/srv/libllama.so", loaded=True
    )
    selector.is_gpu = False
    return selector


class TestLifespan:
    async def test_startup_wires_state_and_shutdown_disposes(
        self, settings: Settings, selector: MagicMock
    ) -> None:
        from gguf_gateway.main import app, lifespan

        with (
            patch("gguf_gateway.main.get_settings", return_value=settings),
            patch("gguf_gateway.main.BackendSelector", return_value=selector),
        ):
            async with lifespan(app):
                selector.configure.assert_called_once_with(settings)
                assert app.state.backend is selector
                assert app.state.initialized is True
                assert app.state.dispatcher.catalog is app.state.catalog
                assert app.state.dispatcher.default_max_tokens == settings.default_max_tokens
                registry = app.state.registry
                registry.dispose_all = AsyncMock()

        registry.dispose_all.assert_awaited_once()
        assert app.state.initialized is False

    async def test_startup_survives_backend_failure(
        self, settings: Settings, selector: MagicMock
    ) -> None:
        from gguf_gateway.main import app, lifespan

        selector.configure.return_value = BackendDescriptor(
            name="cpu", library_path="/srv/libllama.so", loaded=False, error="bad elf"
        )
        with (
            patch("gguf_gateway.main.get_settings", return_value=settings),
            patch("gguf_gateway.main.BackendSelector", return_value=selector),
        ):
            async with lifespan(app):
                assert app.state.initialized is True


class TestMiddleware:
    async def test_request_id_header(self) -> None:
        from gguf_gateway.main import app

        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="https://testserver") as client:
            first = await client.get("/health")
            second = await client.get("/health")

        assert first.status_code == 200
        assert len(first.headers["x-request-id"]) == 32
        assert first.headers["x-request-id"] != second.headers["x-request-id"]

    async def test_routes_mounted(self) -> None:
        from gguf_gateway.main import app

        paths = {route.path for route in app.routes}

        assert {
            "/health",
            "/health/ready",
            "/v1/completions",
            "/v1/chat/completions",
            "/v1/embeddings",
            "/v1/models",
            "/api/generate",
            "/api/chat",
            "/api/embed",
            "/api/tags",
        } <= paths
