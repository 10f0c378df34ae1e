"""Tests for protocol-aware error envelopes."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from gguf_gateway.api.error_handlers import (
    get_status_code_for_error,
    register_exception_handlers,
)
from gguf_gateway.core.exceptions import (
    BackendUnavailableError,
    CapabilityError,
    ConfigurationError,
    GatewayError,
    GenerationFailedError,
    ModelNotFoundError,
    PreconditionError,
    ValidationError,
)


class TestStatusMapping:
    @pytest.mark.parametrize(
        ("error", "status"),
        [
            (ValidationError("x"), 400),
            (CapabilityError("x"), 403),
            (ModelNotFoundError("x"), 404),
            (BackendUnavailableError("x"), 503),
            (GenerationFailedError("x"), 500),
            (PreconditionError("x"), 500),
            (ConfigurationError("x"), 500),
            (GatewayError("x"), 500),
            (RuntimeError("x"), 500),
        ],
    )
    def test_status(self, error: Exception, status: int) -> None:
        assert get_status_code_for_error(error) == status


@pytest.fixture
def error_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/v1/missing")
    async def openai_missing() -> None:
        raise ModelNotFoundError("The model `x` does not exist or you do not have access to it.")

    @app.get("/api/missing")
    async def ollama_missing() -> None:
        raise ModelNotFoundError("model 'x' not found")

    @app.get("/v1/bad-temperature")
    async def bad_temperature() -> None:
        raise ValidationError("temperature out of range", param="temperature")

    @app.get("/v1/no-backend")
    async def no_backend() -> None:
        raise BackendUnavailableError("Native backend unavailable")

    @app.get("/v1/crash")
    async def crash() -> None:
        raise RuntimeError("unexpected")

    @app.get("/api/crash")
    async def ollama_crash() -> None:
        raise RuntimeError("unexpected")

    @app.post("/v1/typed")
    async def typed(value: int) -> int:
        return value

    return app


@pytest.fixture
async def error_client(error_app: FastAPI):
    transport = ASGITransport(app=error_app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="https://testserver") as client:
        yield client


class TestEnvelopes:
    async def test_openai_not_found(self, error_client: AsyncClient) -> None:
        response = await error_client.get("/v1/missing")

        assert response.status_code == 404
        assert response.json() == {
            "error": {
                "message": "The model `x` does not exist or you do not have access to it.",
                "type": "invalid_request_error",
                "param": "model",
                "code": "model_not_found",
            }
        }

    async def test_ollama_not_found(self, error_client: AsyncClient) -> None:
        response = await error_client.get("/api/missing")

        assert response.status_code == 404
        assert response.json() == {"error": "model 'x' not found"}

    async def test_validation_param(self, error_client: AsyncClient) -> None:
        response = await error_client.get("/v1/bad-temperature")

        assert response.status_code == 400
        assert response.json()["error"]["param"] == "temperature"
        assert response.json()["error"]["code"] == "invalid_request"

    async def test_backend_unavailable(self, error_client: AsyncClient) -> None:
        response = await error_client.get("/v1/no-backend")

        assert response.status_code == 503
        assert response.json()["error"]["type"] == "server_error"
        assert response.json()["error"]["code"] == "backend_unavailable"

    async def test_unhandled_openai(self, error_client: AsyncClient) -> None:
        response = await error_client.get("/v1/crash")

        assert response.status_code == 500
        assert response.json()["error"]["message"] == "Internal server error: unexpected"

    async def test_unhandled_ollama(self, error_client: AsyncClient) -> None:
        response = await error_client.get("/api/crash")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error: unexpected"}

    async def test_request_validation_is_400(self, error_client: AsyncClient) -> None:
        response = await error_client.post("/v1/typed", params={"value": "abc"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_request"
        assert response.json()["error"]["param"] == "query.value"
