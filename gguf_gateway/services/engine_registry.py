"""Engine registry: single-flight, cached engine construction.

One InferenceEngine per model file for the life of the process. Engines are
created on first use. Concurrent first callers for the same model wait on
one initialization and receive the same instance; callers for different
models never wait on each other.

There is no eviction. Engines live until dispose()/dispose_all().

Patterns applied:
- Per-key asyncio.Lock (single-flight) with a double-checked cache lookup
- Failed initializations are not cached; the next caller retries
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from gguf_gateway.core.exceptions import ModelNotFoundError
from gguf_gateway.core.logging import get_logger
from gguf_gateway.providers.base import InferenceEngine


if TYPE_CHECKING:
    from gguf_gateway.providers.backends.selector import BackendSelector


logger = get_logger(__name__)

EngineFactory = Callable[[str], InferenceEngine]


def model_identity(model_path: str | Path) -> str:
    """Cache key for a model file: its absolute, normalized path."""
    return os.path.normpath(os.path.abspath(os.fspath(model_path)))


class EngineRegistry:
    """Cache of initialized engines keyed by model file.

    Args:
        engine_factory: Builds an uninitialized engine for a model path.
        backend: When given, engine construction is refused unless a native
            backend has loaded.
    """

    def __init__(
        self,
        engine_factory: EngineFactory,
        backend: BackendSelector | None = None,
    ) -> None:
        self._engine_factory = engine_factory
        self._backend = backend
        self._engines: dict[str, InferenceEngine] = {}
        self._key_locks: dict[str, asyncio.Lock] = {}

    # =========================================================================
    # Lookup
    # =========================================================================

    def get(self, model_path: str | Path) -> InferenceEngine | None:
        """Return the cached engine for a model without creating one."""
        return self._engines.get(model_identity(model_path))

    def loaded_models(self) -> list[str]:
        return sorted(self._engines)

    def __len__(self) -> int:
        return len(self._engines)

    def __contains__(self, model_path: object) -> bool:
        if not isinstance(model_path, (str, Path)):
            return False
        return model_identity(model_path) in self._engines

    async def get_or_create(self, model_path: str | Path) -> InferenceEngine:
        """Return the engine for a model file, initializing it on first use.

        Raises:
            ModelNotFoundError: The model file does not exist. Not cached,
                so a file added later is picked up.
            BackendUnavailableError: No native backend is loaded.
            Exception: Whatever engine initialization raised. Failed engines
                are not cached; the next call retries.
        """
        key = model_identity(model_path)
        if not Path(key).is_file():
            raise ModelNotFoundError(f"Model file not found: {model_path}", model_id=str(model_path))

        engine = self._engines.get(key)
        if engine is not None:
            return engine

        if self._backend is not None:
            self._backend.require_loaded()

        lock = self._key_locks.setdefault(key, asyncio.Lock())
        async with lock:
            engine = self._engines.get(key)
            if engine is not None:
                return engine

            logger.info("Initializing engine", key=key)
            engine = self._engine_factory(key)
            try:
                await engine.initialize(key)
            except Exception as exc:
                logger.error("Engine initialization failed", key=key, error=str(exc))
                raise

            self._engines[key] = engine
            logger.info(
                "Engine published",
                key=key,
                supports_generation=engine.capabilities.supports_generation,
                supports_embeddings=engine.capabilities.supports_embeddings,
                loaded_count=len(self._engines),
            )
            return engine

    # =========================================================================
    # Disposal
    # =========================================================================

    async def dispose(self, model_path: str | Path) -> bool:
        """Dispose and forget one engine. Returns False if none was cached."""
        key = model_identity(model_path)
        lock = self._key_locks.setdefault(key, asyncio.Lock())
        async with lock:
            engine = self._engines.pop(key, None)
            if engine is None:
                return False
            await engine.dispose()
        logger.info("Engine removed", key=key)
        return True

    async def dispose_all(self) -> None:
        """Dispose every engine (application shutdown)."""
        for key in list(self._engines):
            await self.dispose(key)
