"""Inference engine contract.

Everything above the provider layer (registry, dispatcher, routes) talks to
engines only through the InferenceEngine protocol below. Engines are
structural: any object with these members qualifies, no base class needed.

Lifecycle:
    UNINITIALIZED -> INITIALIZING -> READY | FAILED
    any state -> DISPOSED (terminal)

Cancellation:
    Streams are async iterators. Closing one (aclose(), or cancelling the
    task iterating it) must stop the underlying computation promptly.

Patterns applied:
- typing.Protocol + @runtime_checkable for the port
- Frozen dataclass for capability flags
- AsyncIterator for streaming
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

from gguf_gateway.core.constants import MAX_TEMPERATURE, MIN_MAX_TOKENS, MIN_TEMPERATURE
from gguf_gateway.core.exceptions import PreconditionError, ValidationError


class EngineState(str, Enum):
    """Engine lifecycle state."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"
    DISPOSED = "disposed"


@dataclass(frozen=True)
class EngineCapabilities:
    """Operations an initialized engine can serve.

    Attributes:
        supports_generation: Text and chat generation.
        supports_embeddings: Embedding vectors.
        supports_gpu: Weights are offloaded to a GPU.
    """

    supports_generation: bool = False
    supports_embeddings: bool = False
    supports_gpu: bool = False


NO_CAPABILITIES = EngineCapabilities()


@runtime_checkable
class InferenceEngine(Protocol):
    """Capability surface of a loaded model.

    initialize() is not safe to call twice concurrently on one instance; the
    EngineRegistry guarantees it is called once. Unless an implementation
    says otherwise, callers must not overlap generation calls on one
    instance.
    """

    @property
    def state(self) -> EngineState: ...

    @property
    def capabilities(self) -> EngineCapabilities:
        """Valid once state is READY."""
        ...

    @property
    def context_size(self) -> int: ...

    @property
    def embedding_dimensions(self) -> int | None:
        """Vector length, or None until the first successful embedding."""
        ...

    async def initialize(self, model_path: str) -> None:
        """Load weights. May take seconds to minutes."""
        ...

    async def generate_text(
        self,
        prompt: str,
        max_tokens: int,
        temperature: float,
        stop_sequences: Sequence[str] | None = None,
    ) -> str:
        """Generate a complete response.

        Raises:
            PreconditionError: Not READY.
            ValidationError: Temperature out of range.
            GenerationFailedError: The native computation raised.
        """
        ...

    def generate_text_stream(
        self,
        prompt: str,
        max_tokens: int,
        temperature: float,
        stop_sequences: Sequence[str] | None = None,
    ) -> AsyncIterator[str]:
        """Yield text fragments in generation order.

        The iterator must be drained or closed by the consumer.
        """
        ...

    async def generate_embeddings(self, text: str) -> list[float]: ...

    async def generate_embeddings_batch(
        self, texts: Sequence[str]
    ) -> list[list[float]]: ...

    async def dispose(self) -> None:
        """Release native resources. Idempotent."""
        ...


# =============================================================================
# Shared argument checks
# =============================================================================


def clamp_max_tokens(max_tokens: int) -> int:
    """Raise small token limits to the engine floor."""
    return max(max_tokens, MIN_MAX_TOKENS)


def validate_temperature(temperature: float) -> float:
    """Reject temperatures outside [0.0, 2.0].

    Raises:
        ValidationError: If out of range.
    """
    if not MIN_TEMPERATURE <= temperature <= MAX_TEMPERATURE:
        raise ValidationError(
            f"temperature must be between {MIN_TEMPERATURE} and {MAX_TEMPERATURE}, "
            f"got {temperature}",
            param="temperature",
        )
    return temperature


def ensure_ready(state: EngineState, model_path: str | None = None) -> None:
    """Raise PreconditionError unless the engine is READY."""
    if state is EngineState.READY:
        return
    if state is EngineState.DISPOSED:
        raise PreconditionError(
            f"Engine for {model_path or 'model'} has been disposed", state=state.value
        )
    raise PreconditionError(
        f"Engine for {model_path or 'model'} is not initialized", state=state.value
    )
