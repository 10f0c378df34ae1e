"""Completion dispatcher: request validation, engine lookup, generation.

Validation runs in a fixed order before any generation call:

1. a model name is present                       -> ValidationError (400)
2. the catalog knows the model                   -> ModelNotFoundError (404)
3. the engine supports the operation             -> CapabilityError (403)
4. embeddings only: input is a non-empty string
   or a non-empty list of non-empty strings      -> ValidationError (400)

Routes call resolve() before building a StreamingResponse so every one of
these errors is reported with a proper status code, never mid-stream.

Engines serialize their own generation calls; batch prompts are run one
after another against the same engine.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from gguf_gateway.core.exceptions import (
    CapabilityError,
    ModelNotFoundError,
    ValidationError,
)
from gguf_gateway.core.logging import get_logger
from gguf_gateway.providers.base import InferenceEngine, validate_temperature
from gguf_gateway.services.catalog import ModelCatalog, ModelDescriptor
from gguf_gateway.services.engine_registry import EngineRegistry
from gguf_gateway.services.prompts import ChatTurn, build_chat_prompt
from gguf_gateway.services.streaming import (
    PromptStream,
    StreamFrame,
    chained_lookahead,
    per_prompt_lookahead,
)


logger = get_logger(__name__)

OPENAI_API_REFERENCE = "https://platform.openai.com/docs/api-reference"


class WireProtocol(str, Enum):
    OPENAI = "openai"
    OLLAMA = "ollama"


class Operation(str, Enum):
    GENERATION = "generation"
    EMBEDDINGS = "embeddings"


@dataclass(frozen=True)
class ResolvedModel:
    """A validated model name bound to its ready engine."""

    name: str
    descriptor: ModelDescriptor
    engine: InferenceEngine


@dataclass(frozen=True)
class GenerationOptions:
    max_tokens: int
    temperature: float
    stop_sequences: tuple[str, ...] | None = None


def _stop_tuple(stop: str | Sequence[str] | None) -> tuple[str, ...] | None:
    if stop is None:
        return None
    if isinstance(stop, str):
        return (stop,) if stop else None
    return tuple(s for s in stop if s) or None


class CompletionDispatcher:
    """Bridges validated requests to engines for both wire protocols.

    Args:
        catalog: Name to model file lookup.
        registry: Engine cache.
        default_max_tokens: Used when a request omits a token limit.
        default_temperature: Used when a request omits temperature.
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        registry: EngineRegistry,
        default_max_tokens: int,
        default_temperature: float,
    ) -> None:
        self.catalog = catalog
        self.registry = registry
        self.default_max_tokens = default_max_tokens
        self.default_temperature = default_temperature

    # =========================================================================
    # Validation
    # =========================================================================

    async def resolve(
        self,
        model: str | None,
        operation: Operation,
        protocol: WireProtocol,
    ) -> ResolvedModel:
        """Validate the model name and return its engine.

        Raises:
            ValidationError: No model name.
            ModelNotFoundError: Unknown model.
            CapabilityError: Engine cannot perform the operation.
        """
        if model is None or not model.strip():
            message = (
                "you must provide a model parameter"
                if protocol is WireProtocol.OPENAI
                else "model is required"
            )
            raise ValidationError(message, param="model")

        descriptor = self.catalog.get_by_name(model)
        if descriptor is None:
            message = (
                f"The model `{model}` does not exist or you do not have access to it."
                if protocol is WireProtocol.OPENAI
                else f"model '{model}' not found"
            )
            raise ModelNotFoundError(message, model_id=model)

        engine = await self.registry.get_or_create(descriptor.path)
        capabilities = engine.capabilities
        supported = (
            capabilities.supports_embeddings
            if operation is Operation.EMBEDDINGS
            else capabilities.supports_generation
        )
        if not supported:
            noun = "embeddings" if operation is Operation.EMBEDDINGS else "completions"
            message = (
                f"You are not allowed to generate {noun} from this model"
                if protocol is WireProtocol.OPENAI
                else f"model '{model}' does not support {operation.value}"
            )
            raise CapabilityError(message, model_id=model, operation=operation.value)

        logger.debug(
            "Model resolved",
            model=model,
            path=descriptor.path,
            operation=operation.value,
            protocol=protocol.value,
        )
        return ResolvedModel(name=model, descriptor=descriptor, engine=engine)

    def options(
        self,
        max_tokens: int | None,
        temperature: float | None,
        stop: str | Sequence[str] | None = None,
    ) -> GenerationOptions:
        """Fill request defaults and check temperature up front.

        Raises:
            ValidationError: Temperature outside [0.0, 2.0].
        """
        if temperature is None:
            temperature = self.default_temperature
        return GenerationOptions(
            max_tokens=max_tokens if max_tokens is not None else self.default_max_tokens,
            temperature=validate_temperature(temperature),
            stop_sequences=_stop_tuple(stop),
        )

    @staticmethod
    def validate_prompts(prompts: Sequence[str], protocol: WireProtocol) -> list[str]:
        """Reject an empty prompt batch.

        Raises:
            ValidationError: The prompt list has no entries.
        """
        if not prompts:
            message = (
                "'$.prompt' must contain at least one prompt"
                if protocol is WireProtocol.OPENAI
                else "prompt must not be empty"
            )
            raise ValidationError(message, param="prompt")
        return list(prompts)

    @staticmethod
    def validate_embedding_input(value: Any, protocol: WireProtocol) -> list[str]:
        """Normalize embedding input to a list of non-empty strings.

        Raises:
            ValidationError: Missing, empty or wrongly typed input.
        """
        if value is None:
            message = (
                "'input' is a required property"
                if protocol is WireProtocol.OPENAI
                else "input is required"
            )
            raise ValidationError(message, param="input")

        if isinstance(value, str):
            texts = [value]
        elif isinstance(value, list):
            texts = value
        else:
            texts = []

        if not texts or not all(isinstance(t, str) and t for t in texts):
            message = (
                f"'$.input' is invalid. Please check the API reference: {OPENAI_API_REFERENCE}."
                if protocol is WireProtocol.OPENAI
                else "input must be a non-empty string or a list of non-empty strings"
            )
            raise ValidationError(message, param="input")
        return list(texts)

    # =========================================================================
    # Generation
    # =========================================================================

    def chat_prompt(
        self,
        resolved: ResolvedModel,
        messages: Sequence[ChatTurn],
        options: GenerationOptions,
    ) -> tuple[str, GenerationOptions]:
        """Render chat messages; the format's stop sequences apply when the
        request gives none.

        Raises:
            ValidationError: No messages.
        """
        if not messages:
            raise ValidationError("messages must contain at least one message", param="messages")
        prompt, default_stops = build_chat_prompt(messages, resolved.descriptor.family)
        if options.stop_sequences is None:
            options = GenerationOptions(options.max_tokens, options.temperature, default_stops)
        return prompt, options

    async def generate(
        self,
        resolved: ResolvedModel,
        prompts: Sequence[str],
        options: GenerationOptions,
    ) -> list[str]:
        """Complete every prompt, in order."""
        results: list[str] = []
        for prompt in prompts:
            results.append(
                await resolved.engine.generate_text(
                    prompt,
                    options.max_tokens,
                    options.temperature,
                    options.stop_sequences,
                )
            )
        logger.info("Completion generated", model=resolved.name, prompts=len(prompts))
        return results

    def stream(
        self,
        resolved: ResolvedModel,
        prompts: Sequence[str],
        options: GenerationOptions,
        protocol: WireProtocol,
    ) -> AsyncIterator[StreamFrame]:
        """Stream frames for one or more prompts.

        OpenAI gets one final frame per prompt, Ollama a single final frame
        for the whole batch.
        """
        engine = resolved.engine

        def opener(prompt: str) -> PromptStream:
            return lambda: engine.generate_text_stream(
                prompt,
                options.max_tokens,
                options.temperature,
                options.stop_sequences,
            )

        streams = [opener(p) for p in prompts]
        logger.info(
            "Streaming completion",
            model=resolved.name,
            prompts=len(streams),
            protocol=protocol.value,
        )
        if protocol is WireProtocol.OPENAI:
            return per_prompt_lookahead(streams)
        return chained_lookahead(streams)

    async def embed(self, resolved: ResolvedModel, texts: Sequence[str]) -> list[list[float]]:
        vectors = await resolved.engine.generate_embeddings_batch(list(texts))
        logger.info(
            "Embeddings generated",
            model=resolved.name,
            inputs=len(texts),
            dimensions=resolved.engine.embedding_dimensions,
        )
        return vectors
