"""Native compute backend selection.

BackendSelector chooses between the CPU and GPU builds of libllama, loads
exactly one per process, and falls back to CPU once if the GPU build fails.
It never raises out of configure(): failures are recorded on the descriptor
and reported later by require_loaded().

State machine:
    UNCONFIGURED -> DETECTING -> CPU_CHOSEN | GPU_CHOSEN -> PATH_RESOLVED
    -> LOADING -> LOADED | LOAD_FAILED -> (gpu only) FALLBACK_TO_CPU
    -> LOADING -> LOADED | UNAVAILABLE
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from gguf_gateway.core.constants import BACKEND_CPU, BACKEND_GPU
from gguf_gateway.core.exceptions import BackendUnavailableError
from gguf_gateway.core.logging import get_logger
from gguf_gateway.providers.backends.detection import GpuDetector, PlatformInfo
from gguf_gateway.providers.backends.library import (
    NativeLibraryLoader,
    bundled_library_dir,
    resolve_library_path,
)


if TYPE_CHECKING:
    from gguf_gateway.core.config import Settings


logger = get_logger(__name__)


class SelectorState(str, Enum):
    UNCONFIGURED = "unconfigured"
    DETECTING = "detecting"
    CPU_CHOSEN = "cpu_chosen"
    GPU_CHOSEN = "gpu_chosen"
    PATH_RESOLVED = "path_resolved"
    LOADING = "loading"
    LOADED = "loaded"
    LOAD_FAILED = "load_failed"
    FALLBACK_TO_CPU = "fallback_to_cpu"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class BackendDescriptor:
    """Outcome of backend selection. Immutable once published."""

    name: str
    library_path: str
    loaded: bool
    device_count: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "library_path": self.library_path,
            "loaded": self.loaded,
            "device_count": self.device_count,
            "error": self.error,
        }


class BackendSelector:
    """Selects and loads one native backend, once.

    Construct one per process and pass it to the engine registry; engines
    read the descriptor to decide GPU offload.

    Example:
        >>> selector = BackendSelector()
        >>> descriptor = selector.configure(get_settings())
        >>> descriptor.loaded
        True
    """

    def __init__(
        self,
        platform_info: PlatformInfo | None = None,
        gpu_detector: GpuDetector | None = None,
        loader: NativeLibraryLoader | None = None,
        bundled_dir: Path | None = None,
    ) -> None:
        self._platform = platform_info or PlatformInfo.current()
        self._gpu_detector = gpu_detector
        self._loader = loader or NativeLibraryLoader(self._platform)
        self._bundled_dir = bundled_dir
        self._lock = threading.Lock()
        self._descriptor: BackendDescriptor | None = None
        self._state = SelectorState.UNCONFIGURED

    # =========================================================================
    # Properties
    # =========================================================================
    @property
    def state(self) -> SelectorState:
        return self._state

    @property
    def descriptor(self) -> BackendDescriptor | None:
        return self._descriptor

    @property
    def is_configured(self) -> bool:
        return self._descriptor is not None

    @property
    def is_gpu(self) -> bool:
        return (
            self._descriptor is not None
            and self._descriptor.loaded
            and self._descriptor.name == BACKEND_GPU
        )

    def require_loaded(self) -> BackendDescriptor:
        """Return the descriptor of a loaded backend.

        Raises:
            BackendUnavailableError: If configure() has not run or nothing loaded.
        """
        descriptor = self._descriptor
        if descriptor is None:
            raise BackendUnavailableError("Native backend has not been configured")
        if not descriptor.loaded:
            raise BackendUnavailableError(
                f"Native backend unavailable: {descriptor.error}",
                backend=descriptor.name,
                library_path=descriptor.library_path,
            )
        return descriptor

    # =========================================================================
    # Selection
    # =========================================================================
    def configure(self, settings: Settings) -> BackendDescriptor:
        """Select and load the backend. Later calls return the first result."""
        with self._lock:
            if self._descriptor is not None:
                logger.debug("Backend already configured", backend=self._descriptor.name)
                return self._descriptor

            backend = self.determine_backend(settings)
            descriptor = self._resolve_and_load(backend, settings)

            if not descriptor.loaded and backend == BACKEND_GPU:
                self._transition(SelectorState.FALLBACK_TO_CPU)
                logger.warning(
                    "GPU backend failed to load, falling back to CPU",
                    library_path=descriptor.library_path,
                    error=descriptor.error,
                )
                descriptor = self._resolve_and_load(BACKEND_CPU, settings)

            if not descriptor.loaded:
                self._transition(SelectorState.UNAVAILABLE)
                logger.error(
                    "No native backend could be loaded",
                    backend=descriptor.name,
                    library_path=descriptor.library_path,
                    error=descriptor.error,
                )

            self._descriptor = descriptor
            return descriptor

    def determine_backend(self, settings: Settings) -> str:
        """Choose cpu or gpu. An operator override skips every probe."""
        self._transition(SelectorState.DETECTING)

        if settings.force_backend:
            backend = settings.force_backend
            logger.info("Backend forced by configuration", backend=backend)
        elif not self._platform.supports_gpu_backend:
            backend = BACKEND_CPU
            logger.info(
                "Platform has no GPU backend, using CPU",
                runtime_identifier=self._platform.runtime_identifier,
            )
        else:
            detector = self._gpu_detector or GpuDetector(
                self._platform, timeout_seconds=settings.gpu_probe_timeout_seconds
            )
            backend = BACKEND_GPU if detector.detect() else BACKEND_CPU

        self._transition(
            SelectorState.GPU_CHOSEN if backend == BACKEND_GPU else SelectorState.CPU_CHOSEN
        )
        return backend

    def resolve_library_path(self, backend: str, settings: Settings) -> str:
        explicit = (
            settings.gpu_backend_path if backend == BACKEND_GPU else settings.cpu_backend_path
        )
        if self._bundled_dir is None:
            self._bundled_dir = bundled_library_dir()
        path = resolve_library_path(
            backend,
            self._platform,
            settings.native_base_dir,
            explicit_path=explicit,
            bundled_dir=self._bundled_dir,
        )
        self._transition(SelectorState.PATH_RESOLVED)
        logger.info("Native library path resolved", backend=backend, library_path=path)
        return path

    def load(self, library_path: str) -> int:
        """Bind the library; returns the device count reported by it."""
        self._transition(SelectorState.LOADING)
        return self._loader.load(library_path)

    # =========================================================================
    # Internals
    # =========================================================================
    def _resolve_and_load(self, backend: str, settings: Settings) -> BackendDescriptor:
        library_path = self.resolve_library_path(backend, settings)
        try:
            device_count = self.load(library_path)
        except Exception as exc:
            self._transition(SelectorState.LOAD_FAILED)
            logger.warning(
                "Native library load failed",
                backend=backend,
                library_path=library_path,
                error=str(exc),
            )
            return BackendDescriptor(
                name=backend,
                library_path=library_path,
                loaded=False,
                error=str(exc),
            )

        self._transition(SelectorState.LOADED)
        return BackendDescriptor(
            name=backend,
            library_path=library_path,
            loaded=True,
            device_count=device_count,
        )

    def _transition(self, state: SelectorState) -> None:
        logger.debug("Backend selector state", previous=self._state.value, state=state.value)
        self._state = state
