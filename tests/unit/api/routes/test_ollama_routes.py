"""Tests for the Ollama-compatible routes under /api."""

from __future__ import annotations

import json

import pytest
from httpx import AsyncClient

from tests.unit.providers.fake_engine import (
    MODEL_CHAT,
    MODEL_EMBED_ONLY,
    MODEL_FILES,
    MODEL_GENERATION_ONLY,
    FakeEngine,
)


def _ndjson(body: str) -> list[dict]:
    return [json.loads(line) for line in body.splitlines() if line.strip()]


# =============================================================================
# /api/generate
# =============================================================================


class TestGenerate:
    async def test_non_streaming_is_default(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            "/api/generate", json={"model": MODEL_CHAT, "prompt": "Say hi"}
        )

        assert response.status_code == 200
        payload = response.json()
        assert payload["model"] == MODEL_CHAT
        assert payload["response"] == "Hello, world"
        assert payload["done"] is True
        assert payload["done_reason"] == "stop"
        assert "index" not in payload

    async def test_streaming_done_only_on_last_frame(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            "/api/generate", json={"model": MODEL_CHAT, "prompt": "Say hi", "stream": True}
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        frames = _ndjson(response.text)
        assert [f["done"] for f in frames] == [False, False, True]
        assert "".join(f["response"] for f in frames) == "Hello, world"
        assert frames[-1]["done_reason"] == "stop"
        assert all("done_reason" not in f for f in frames[:-1])

    async def test_streaming_batch_single_done(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            "/api/generate",
            json={"model": MODEL_CHAT, "prompt": ["a", "b"], "stream": True},
        )

        frames = _ndjson(response.text)
        assert [f["done"] for f in frames].count(True) == 1
        assert frames[-1]["done"] is True
        assert [f["index"] for f in frames] == [0, 0, 0, 1, 1, 1]

    async def test_non_streaming_batch_returns_list(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            "/api/generate", json={"model": MODEL_CHAT, "prompt": ["a", "b"]}
        )

        payload = response.json()
        assert [item["index"] for item in payload] == [0, 1]

    async def test_system_prefixed_and_options_applied(
        self, async_client: AsyncClient, created_engines: dict[str, FakeEngine]
    ) -> None:
        await async_client.post(
            "/api/generate",
            json={
                "model": MODEL_CHAT,
                "prompt": "Question",
                "system": "Be brief.",
                "options": {"num_predict": 256, "temperature": 0.1, "stop": ["END"]},
            },
        )

        [call] = created_engines[MODEL_FILES[MODEL_CHAT]].generate_calls
        assert call["prompt"] == "Be brief.\n\nQuestion"
        assert call["max_tokens"] == 256
        assert call["temperature"] == 0.1
        assert call["stop"] == ("END",)

    async def test_unknown_model(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            "/api/generate", json={"model": "missing-model", "prompt": "x", "stream": True}
        )

        assert response.status_code == 404
        assert response.json() == {"error": "model 'missing-model' not found"}

    async def test_missing_model(self, async_client: AsyncClient) -> None:
        response = await async_client.post("/api/generate", json={"prompt": "x"})

        assert response.status_code == 400
        assert response.json() == {"error": "model is required"}

    async def test_embedding_only_model(
        self, async_client: AsyncClient, created_engines: dict[str, FakeEngine]
    ) -> None:
        response = await async_client.post(
            "/api/generate", json={"model": MODEL_EMBED_ONLY, "prompt": "x", "stream": True}
        )

        assert response.status_code == 403
        assert response.json() == {"error": "model 'nomic-embed' does not support generation"}
        assert created_engines[MODEL_FILES[MODEL_EMBED_ONLY]].generation_attempted is False

    @pytest.mark.parametrize("stream", [False, True])
    async def test_empty_prompt_list_is_400(
        self,
        async_client: AsyncClient,
        created_engines: dict[str, FakeEngine],
        stream: bool,
    ) -> None:
        response = await async_client.post(
            "/api/generate", json={"model": MODEL_CHAT, "prompt": [], "stream": stream}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "prompt must not be empty"}
        assert created_engines[MODEL_FILES[MODEL_CHAT]].generation_attempted is False


# =============================================================================
# /api/chat
# =============================================================================


class TestChat:
    async def test_non_streaming(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            "/api/chat",
            json={"model": MODEL_CHAT, "messages": [{"role": "user", "content": "Hi"}]},
        )

        payload = response.json()
        assert payload["message"] == {"role": "assistant", "content": "Hello, world"}
        assert payload["done"] is True

    async def test_streaming(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            "/api/chat",
            json={
                "model": f"{MODEL_CHAT}:latest",
                "messages": [{"role": "user", "content": "Hi"}],
                "stream": True,
            },
        )

        frames = _ndjson(response.text)
        assert [f["done"] for f in frames] == [False, False, True]
        assert all(f["message"]["role"] == "assistant" for f in frames)
        assert frames[0]["model"] == f"{MODEL_CHAT}:latest"

    async def test_mid_stream_failure(self, async_client: AsyncClient, app) -> None:
        descriptor = app.state.catalog.get_by_name(MODEL_CHAT)
        engine = await app.state.registry.get_or_create(descriptor.path)
        engine.stream_error = RuntimeError("kv cache full")

        response = await async_client.post(
            "/api/chat",
            json={
                "model": MODEL_CHAT,
                "messages": [{"role": "user", "content": "Hi"}],
                "stream": True,
            },
        )

        frames = _ndjson(response.text)
        assert "error" in frames[-1]
        assert all(not f.get("done") for f in frames)


# =============================================================================
# /api/embed and /api/tags
# =============================================================================


class TestEmbed:
    async def test_embeddings(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            "/api/embed", json={"model": MODEL_CHAT, "input": ["ab", "abc"]}
        )

        assert response.status_code == 200
        assert response.json() == {"model": MODEL_CHAT, "embeddings": [[2.0] * 4, [3.0] * 4]}

    async def test_generation_only_model(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            "/api/embed", json={"model": MODEL_GENERATION_ONLY, "input": "x"}
        )

        assert response.status_code == 403
        assert response.json() == {"error": "model 'tinyllama' does not support embeddings"}

    async def test_missing_input(self, async_client: AsyncClient) -> None:
        response = await async_client.post("/api/embed", json={"model": MODEL_CHAT})

        assert response.status_code == 400
        assert response.json() == {"error": "input is required"}


class TestTags:
    async def test_lists_models(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/api/tags")

        assert response.status_code == 200
        models = {m["name"]: m for m in response.json()["models"]}
        assert set(models) == set(MODEL_FILES)
        chat = models[MODEL_CHAT]
        assert chat["details"] == {
            "format": "gguf",
            "family": "phi",
            "quantization_level": "Q4_K_M",
        }
        assert chat["size"] == 20
        assert chat["modified_at"].endswith("Z")
