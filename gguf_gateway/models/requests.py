"""Request models for both wire protocols.

``model`` is optional everywhere so a missing model is reported by the
dispatcher with the protocol's own 400 envelope, and embedding ``input`` is
left untyped so its shape errors carry the protocol's exact messages.

Patterns applied:
- Pydantic v2 BaseModel with Field descriptions
- Unknown client fields ignored (OpenAI SDKs send many)
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Shared
# =============================================================================


class ChatMessage(BaseModel):
    """One chat turn."""

    model_config = ConfigDict(extra="ignore")

    role: str = Field(..., description="system, user or assistant", examples=["user"])
    content: str | None = Field(default=None, description="Message text")


# =============================================================================
# OpenAI (/v1)
# =============================================================================


class CompletionRequest(BaseModel):
    """POST /v1/completions."""

    model_config = ConfigDict(extra="ignore")

    model: str | None = Field(default=None, description="Model name from /v1/models")
    prompt: str | list[str] = Field(default="", description="Prompt or batch of prompts")
    max_tokens: int | None = Field(default=None, ge=1)
    temperature: float | None = Field(default=None)
    stop: str | list[str] | None = Field(default=None)
    stream: bool = Field(default=False)

    @property
    def prompts(self) -> list[str]:
        return [self.prompt] if isinstance(self.prompt, str) else list(self.prompt)


class ChatCompletionRequest(BaseModel):
    """POST /v1/chat/completions."""

    model_config = ConfigDict(extra="ignore")

    model: str | None = Field(default=None)
    messages: list[ChatMessage] = Field(default_factory=list)
    max_tokens: int | None = Field(default=None, ge=1)
    max_completion_tokens: int | None = Field(default=None, ge=1)
    temperature: float | None = Field(default=None)
    stop: str | list[str] | None = Field(default=None)
    stream: bool = Field(default=False)

    @property
    def token_limit(self) -> int | None:
        return self.max_completion_tokens or self.max_tokens


class EmbeddingRequest(BaseModel):
    """POST /v1/embeddings."""

    model_config = ConfigDict(extra="ignore")

    model: str | None = Field(default=None)
    input: Any = Field(default=None, description="String or list of strings")
    encoding_format: str | None = Field(default=None)


# =============================================================================
# Ollama (/api)
# =============================================================================


class OllamaOptions(BaseModel):
    """Subset of Ollama runtime options honoured by the gateway."""

    model_config = ConfigDict(extra="ignore")

    num_predict: int | None = Field(default=None)
    temperature: float | None = Field(default=None)
    stop: list[str] | None = Field(default=None)


class GenerateRequest(BaseModel):
    """POST /api/generate."""

    model_config = ConfigDict(extra="ignore")

    model: str | None = Field(default=None)
    prompt: str | list[str] = Field(default="")
    system: str | None = Field(default=None)
    options: OllamaOptions = Field(default_factory=OllamaOptions)
    stream: bool = Field(default=False)

    @property
    def prompts(self) -> list[str]:
        prompts = [self.prompt] if isinstance(self.prompt, str) else list(self.prompt)
        if self.system:
            return [f"{self.system}\n\n{p}" for p in prompts]
        return prompts


class OllamaChatRequest(BaseModel):
    """POST /api/chat."""

    model_config = ConfigDict(extra="ignore")

    model: str | None = Field(default=None)
    messages: list[ChatMessage] = Field(default_factory=list)
    options: OllamaOptions = Field(default_factory=OllamaOptions)
    stream: bool = Field(default=False)


class EmbedRequest(BaseModel):
    """POST /api/embed."""

    model_config = ConfigDict(extra="ignore")

    model: str | None = Field(default=None)
    input: Any = Field(default=None)
