"""Response models for both wire protocols.

OpenAI payloads keep null fields (clients read ``finish_reason: null``);
Ollama payloads drop them (``done_reason`` appears only on the final frame).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field


def ollama_timestamp(moment: datetime | None = None) -> str:
    """Timestamp in Ollama's format: 2024-05-01T12:00:00.123456Z."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


# =============================================================================
# OpenAI (/v1)
# =============================================================================


class CompletionChoice(BaseModel):
    text: str
    index: int = 0
    logprobs: None = None
    finish_reason: str | None = None


class CompletionResponse(BaseModel):
    """text_completion object, also used for streamed chunks."""

    id: str
    object: Literal["text_completion"] = "text_completion"
    created: int
    model: str
    choices: list[CompletionChoice]

    def to_sse(self) -> str:
        return f"data: {self.model_dump_json()}\n\n"


class ChatChoiceMessage(BaseModel):
    role: str = "assistant"
    content: str | None = None


class ChatChoice(BaseModel):
    index: int = 0
    message: ChatChoiceMessage
    finish_reason: str | None = None


class ChatCompletionResponse(BaseModel):
    id: str
    object: Literal["chat.completion"] = "chat.completion"
    created: int
    model: str
    choices: list[ChatChoice]


class ChunkDelta(BaseModel):
    role: str | None = None
    content: str | None = None


class ChunkChoice(BaseModel):
    index: int = 0
    delta: ChunkDelta
    finish_reason: str | None = None


class ChatCompletionChunk(BaseModel):
    id: str
    object: Literal["chat.completion.chunk"] = "chat.completion.chunk"
    created: int
    model: str
    choices: list[ChunkChoice]

    def to_sse(self) -> str:
        return f"data: {self.model_dump_json()}\n\n"


class EmbeddingData(BaseModel):
    object: Literal["embedding"] = "embedding"
    index: int
    embedding: list[float]


class EmbeddingResponse(BaseModel):
    object: Literal["list"] = "list"
    data: list[EmbeddingData]
    model: str


class ModelCard(BaseModel):
    id: str
    object: Literal["model"] = "model"
    created: int = 0
    owned_by: str = "gguf-gateway"


class ModelList(BaseModel):
    object: Literal["list"] = "list"
    data: list[ModelCard] = Field(default_factory=list)


# =============================================================================
# Ollama (/api)
# =============================================================================


class GenerateResponse(BaseModel):
    """/api/generate response and NDJSON stream frame."""

    model: str
    created_at: str = Field(default_factory=ollama_timestamp)
    response: str
    done: bool
    done_reason: str | None = None
    index: int | None = None

    def to_ndjson(self) -> str:
        return self.model_dump_json(exclude_none=True) + "\n"


class OllamaMessage(BaseModel):
    role: str = "assistant"
    content: str = ""


class OllamaChatResponse(BaseModel):
    """/api/chat response and NDJSON stream frame."""

    model: str
    created_at: str = Field(default_factory=ollama_timestamp)
    message: OllamaMessage
    done: bool
    done_reason: str | None = None

    def to_ndjson(self) -> str:
        return self.model_dump_json(exclude_none=True) + "\n"


class EmbedResponse(BaseModel):
    model: str
    embeddings: list[list[float]]


class ModelDetails(BaseModel):
    format: str = "gguf"
    family: str
    quantization_level: str


class OllamaModel(BaseModel):
    name: str
    model: str
    modified_at: str
    size: int
    details: ModelDetails


class TagsResponse(BaseModel):
    models: list[OllamaModel] = Field(default_factory=list)
