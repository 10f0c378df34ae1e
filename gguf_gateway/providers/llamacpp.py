"""llama-cpp-python implementation of the InferenceEngine contract.

One LlamaCppEngine owns one GGUF model: a generation context and, when the
model supports it, a second context opened in embedding mode.

Patterns applied:
- Blocking llama.cpp calls run in worker threads (asyncio.to_thread)
- Per-instance asyncio.Lock serializes generation; llama.cpp contexts are
  not safe for concurrent decode calls
- Streaming bridges the worker thread to the event loop with an
  asyncio.Queue; closing the stream trips a stopping criterion so the
  native decode loop halts at the next token
- llama_cpp is imported lazily, after BackendSelector has pointed
  LLAMA_CPP_LIB_PATH at the selected native library
"""

from __future__ import annotations

import asyncio
import contextlib
import importlib
import threading
from collections.abc import AsyncIterator, Callable, Sequence
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, Any

from gguf_gateway.core.constants import DEFAULT_CONTEXT_LENGTH
from gguf_gateway.core.exceptions import (
    BackendUnavailableError,
    GenerationFailedError,
    ModelNotFoundError,
    PreconditionError,
)
from gguf_gateway.core.logging import get_logger
from gguf_gateway.providers.base import (
    NO_CAPABILITIES,
    EngineCapabilities,
    EngineState,
    clamp_max_tokens,
    ensure_ready,
    validate_temperature,
)


if TYPE_CHECKING:
    from gguf_gateway.core.config import Settings
    from gguf_gateway.providers.backends.selector import BackendSelector


logger = get_logger(__name__)

# Queue message kinds for the streaming bridge
_FRAGMENT = "fragment"
_ERROR = "error"
_DONE = "done"


def _import_llama_cpp() -> ModuleType:
    """Import the llama_cpp binding.

    Raises:
        BackendUnavailableError: If llama-cpp-python is not installed or its
            native library cannot be bound.
    """
    try:
        return importlib.import_module("llama_cpp")
    except (ImportError, OSError, RuntimeError) as exc:
        raise BackendUnavailableError(
            f"llama-cpp-python could not be imported: {exc}"
        ) from exc


def _pool(embedding: list[Any]) -> list[float]:
    """Mean-pool token-level embeddings into one vector."""
    if embedding and isinstance(embedding[0], list):
        width = len(embedding[0])
        count = len(embedding)
        return [sum(row[i] for row in embedding) / count for i in range(width)]
    return [float(value) for value in embedding]


class LlamaCppEngine:
    """GGUF model served through llama-cpp-python.

    Args:
        model_id: Identity used in logs and errors (usually the file path).
        context_size: Context window in tokens.
        n_gpu_layers: Layers offloaded to the GPU (0 on the CPU backend).
        verbose: Let llama.cpp write its own diagnostics.

    Example:
        >>> engine = LlamaCppEngine("models/phi.Q4_K_M.gguf")
        >>> await engine.initialize("models/phi.Q4_K_M.gguf")
        >>> await engine.generate_text("Hello", 128, 0.6)
    """

    def __init__(
        self,
        model_id: str,
        context_size: int = DEFAULT_CONTEXT_LENGTH,
        n_gpu_layers: int = 0,
        verbose: bool = False,
    ) -> None:
        self._model_id = model_id
        self._context_size = context_size
        self._n_gpu_layers = n_gpu_layers
        self._verbose = verbose

        self._model: Any = None
        self._embedder: Any = None
        self._llama_cpp: ModuleType | None = None
        self._state = EngineState.UNINITIALIZED
        self._capabilities = NO_CAPABILITIES
        self._embedding_dimensions: int | None = None

        self._inference_lock = asyncio.Lock()
        self._embedding_lock = asyncio.Lock()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def capabilities(self) -> EngineCapabilities:
        return self._capabilities

    @property
    def context_size(self) -> int:
        return self._context_size

    @property
    def embedding_dimensions(self) -> int | None:
        return self._embedding_dimensions

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self, model_path: str) -> None:
        """Load the model and, if possible, an embedding context.

        Raises:
            PreconditionError: Called on an engine that is not UNINITIALIZED.
            ModelNotFoundError: The GGUF file does not exist.
            BackendUnavailableError: llama_cpp cannot be imported.
            GenerationFailedError: llama.cpp failed to load the weights.
        """
        if self._state is not EngineState.UNINITIALIZED:
            raise PreconditionError(
                f"Engine for {self._model_id} cannot be initialized from state "
                f"{self._state.value}",
                state=self._state.value,
            )
        if not Path(model_path).is_file():
            raise ModelNotFoundError(f"Model file not found: {model_path}", model_id=model_path)

        self._state = EngineState.INITIALIZING
        try:
            self._llama_cpp = _import_llama_cpp()
            self._model = await asyncio.to_thread(
                self._llama_cpp.Llama,
                model_path=model_path,
                n_ctx=self._context_size,
                n_gpu_layers=self._n_gpu_layers,
                verbose=self._verbose,
            )
        except BackendUnavailableError:
            self._state = EngineState.FAILED
            raise
        except Exception as exc:
            self._state = EngineState.FAILED
            raise GenerationFailedError(
                f"Failed to load model {self._model_id}: {exc}",
                model_id=self._model_id,
                cause=exc,
            ) from exc

        self._embedder = await self._load_embedder(model_path)
        self._capabilities = EngineCapabilities(
            supports_generation=True,
            supports_embeddings=self._embedder is not None,
            supports_gpu=self._n_gpu_layers != 0,
        )
        self._state = EngineState.READY
        logger.info(
            "Engine ready",
            model=self._model_id,
            context_size=self._context_size,
            n_gpu_layers=self._n_gpu_layers,
            embeddings=self._capabilities.supports_embeddings,
        )

    async def _load_embedder(self, model_path: str) -> Any:
        # Embedding support is optional; generation still works without it
        try:
            return await asyncio.to_thread(
                self._llama_cpp.Llama,  # type: ignore[union-attr]
                model_path=model_path,
                n_ctx=self._context_size,
                n_gpu_layers=self._n_gpu_layers,
                embedding=True,
                verbose=self._verbose,
            )
        except Exception as exc:
            logger.warning(
                "Embedding context unavailable", model=self._model_id, error=str(exc)
            )
            return None

    async def dispose(self) -> None:
        if self._state is EngineState.DISPOSED:
            return
        async with self._inference_lock, self._embedding_lock:
            for native in (self._model, self._embedder):
                close = getattr(native, "close", None)
                if close is not None:
                    await asyncio.to_thread(close)
            self._model = None
            self._embedder = None
            self._capabilities = NO_CAPABILITIES
            self._state = EngineState.DISPOSED
        logger.info("Engine disposed", model=self._model_id)

    # =========================================================================
    # Generation
    # =========================================================================

    def _completion_kwargs(
        self,
        prompt: str,
        max_tokens: int,
        temperature: float,
        stop_sequences: Sequence[str] | None,
        cancel: threading.Event,
    ) -> dict[str, Any]:
        stopping = self._llama_cpp.StoppingCriteriaList(  # type: ignore[union-attr]
            [lambda _input_ids, _logits: cancel.is_set()]
        )
        return {
            "prompt": prompt,
            "max_tokens": clamp_max_tokens(max_tokens),
            "temperature": validate_temperature(temperature),
            "stop": list(stop_sequences) if stop_sequences else None,
            "stopping_criteria": stopping,
        }

    async def generate_text(
        self,
        prompt: str,
        max_tokens: int,
        temperature: float,
        stop_sequences: Sequence[str] | None = None,
    ) -> str:
        ensure_ready(self._state, self._model_id)
        cancel = threading.Event()
        kwargs = self._completion_kwargs(
            prompt, max_tokens, temperature, stop_sequences, cancel
        )

        async with self._inference_lock:
            ensure_ready(self._state, self._model_id)
            worker = asyncio.ensure_future(
                asyncio.to_thread(self._model.create_completion, **kwargs)
            )
            try:
                result = await asyncio.shield(worker)
            except asyncio.CancelledError:
                # Keep the lock until the native decode has actually stopped
                cancel.set()
                with contextlib.suppress(Exception):
                    await asyncio.shield(worker)
                raise
            except Exception as exc:
                raise GenerationFailedError(
                    f"Generation failed for {self._model_id}: {exc}",
                    model_id=self._model_id,
                    cause=exc,
                ) from exc

        return result["choices"][0]["text"].strip()

    async def generate_text_stream(
        self,
        prompt: str,
        max_tokens: int,
        temperature: float,
        stop_sequences: Sequence[str] | None = None,
    ) -> AsyncIterator[str]:
        ensure_ready(self._state, self._model_id)
        cancel = threading.Event()
        kwargs = self._completion_kwargs(
            prompt, max_tokens, temperature, stop_sequences, cancel
        )

        # Lock held for the whole stream
        async with self._inference_lock:
            ensure_ready(self._state, self._model_id)
            loop = asyncio.get_running_loop()
            queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
            worker = asyncio.ensure_future(
                asyncio.to_thread(self._run_stream, loop, queue.put_nowait, cancel, kwargs)
            )
            try:
                while True:
                    kind, payload = await queue.get()
                    if kind == _FRAGMENT:
                        yield payload
                    elif kind == _ERROR:
                        raise GenerationFailedError(
                            f"Streaming failed for {self._model_id}: {payload}",
                            model_id=self._model_id,
                            cause=payload,
                        ) from payload
                    else:
                        break
            finally:
                cancel.set()
                await worker

    def _run_stream(
        self,
        loop: asyncio.AbstractEventLoop,
        put: Callable[[tuple[str, Any]], None],
        cancel: threading.Event,
        kwargs: dict[str, Any],
    ) -> None:
        """Worker thread: drive llama.cpp and forward fragments to the loop."""

        def emit(item: tuple[str, Any]) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(put, item)

        try:
            for chunk in self._model.create_completion(stream=True, **kwargs):
                if cancel.is_set():
                    break
                text = chunk["choices"][0].get("text") or ""
                if text:
                    emit((_FRAGMENT, text))
        except Exception as exc:
            emit((_ERROR, exc))
            return
        emit((_DONE, None))

    # =========================================================================
    # Embeddings
    # =========================================================================

    async def generate_embeddings(self, text: str) -> list[float]:
        vectors = await self.generate_embeddings_batch([text])
        return vectors[0]

    async def generate_embeddings_batch(self, texts: Sequence[str]) -> list[list[float]]:
        ensure_ready(self._state, self._model_id)
        if self._embedder is None:
            raise PreconditionError(
                f"Engine for {self._model_id} has no embedding context",
                state=self._state.value,
            )

        async with self._embedding_lock:
            try:
                result = await asyncio.to_thread(
                    self._embedder.create_embedding, input=list(texts)
                )
            except Exception as exc:
                raise GenerationFailedError(
                    f"Embedding failed for {self._model_id}: {exc}",
                    model_id=self._model_id,
                    cause=exc,
                ) from exc

        data = sorted(result["data"], key=lambda item: item["index"])
        vectors = [_pool(item["embedding"]) for item in data]
        if vectors and self._embedding_dimensions is None:
            self._embedding_dimensions = len(vectors[0])
            logger.info(
                "Embedding dimensions discovered",
                model=self._model_id,
                dimensions=self._embedding_dimensions,
            )
        return vectors


# =============================================================================
# Factory
# =============================================================================


def llamacpp_engine_factory(
    settings: Settings, backend: BackendSelector
) -> Callable[[str], LlamaCppEngine]:
    """Build the engine factory used by EngineRegistry.

    GPU offload follows the loaded backend: settings.gpu_layers on the GPU
    backend, none on CPU.
    """

    def create(model_path: str) -> LlamaCppEngine:
        return LlamaCppEngine(
            model_id=model_path,
            context_size=settings.context_length,
            n_gpu_layers=settings.gpu_layers if backend.is_gpu else 0,
            verbose=settings.enable_native_logging,
        )

    return create
