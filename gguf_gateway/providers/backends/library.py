"""Native llama library resolution and loading.

Search order for a backend's library:

1. Explicitly configured path (environment variables expanded)
2. Flat container layout:     <base>/runtimes/<backend>/<lib>
3. Layered layout:            <base>/runtimes/<rid>/native/<tier>/<lib>
   tiers best-to-worst: cuda12 for gpu; avx2, avx512, avx, noavx for x64 cpu
4. Library bundled with the installed llama_cpp package
5. Default: the flat container path, even if missing, so the failure
   surfaces at load time with a concrete path
"""

from __future__ import annotations

import ctypes
import importlib.util
import os
from collections.abc import Callable
from pathlib import Path

from gguf_gateway.core.constants import BACKEND_GPU, LLAMA_CPP_LIB_PATH_ENV
from gguf_gateway.core.logging import get_logger
from gguf_gateway.providers.backends.detection import (
    ARCH_ARM64,
    OS_LINUX,
    PlatformInfo,
)


logger = get_logger(__name__)

RUNTIMES_DIR = "runtimes"
NATIVE_DIR = "native"

GPU_TIERS: tuple[str, ...] = ("cuda12", "")
X64_CPU_TIERS: tuple[str, ...] = ("avx2", "avx512", "avx", "noavx", "")
ARM64_CPU_TIERS: tuple[str, ...] = ("",)

# Loaded with global symbol visibility before libllama, in this order
LINUX_PRELOAD_LIBRARIES: tuple[str, ...] = (
    "libggml-base.so",
    "libggml-cpu.so",
    "libggml.so",
)


class NativeLibraryLoadError(Exception):
    """Raised when a native library cannot be bound or exercised."""

    def __init__(self, message: str, library_path: str) -> None:
        super().__init__(message)
        self.library_path = library_path


# =============================================================================
# Path Resolution
# =============================================================================
def bundled_library_dir() -> Path | None:
    """Directory holding the library shipped inside the llama_cpp wheel.

    Located without importing llama_cpp, because importing it binds a library.
    """
    spec = importlib.util.find_spec("llama_cpp")
    if spec is None or not spec.submodule_search_locations:
        return None
    return Path(next(iter(spec.submodule_search_locations))) / "lib"


def _tiers_for(backend: str, platform_info: PlatformInfo) -> tuple[str, ...]:
    if backend == BACKEND_GPU:
        return GPU_TIERS
    if platform_info.machine == ARCH_ARM64:
        return ARM64_CPU_TIERS
    return X64_CPU_TIERS


def candidate_library_paths(
    backend: str,
    platform_info: PlatformInfo,
    base_dir: str | Path,
    bundled_dir: Path | None = None,
) -> list[Path]:
    """Every location searched for a backend's library, best first."""
    base = Path(base_dir)
    library_name = platform_info.library_name
    layered_root = base / RUNTIMES_DIR / platform_info.runtime_identifier / NATIVE_DIR

    paths = [base / RUNTIMES_DIR / backend / library_name]
    for tier in _tiers_for(backend, platform_info):
        directory = layered_root / tier if tier else layered_root
        paths.append(directory / library_name)
    if bundled_dir is not None:
        paths.append(bundled_dir / library_name)
    return paths


def resolve_library_path(
    backend: str,
    platform_info: PlatformInfo,
    base_dir: str | Path,
    explicit_path: str | None = None,
    bundled_dir: Path | None = None,
    exists: Callable[[Path], bool] = Path.is_file,
) -> str:
    """Pick the library file for a backend.

    Never raises: when nothing exists on disk the conventional flat path is
    returned and the load attempt reports the failure.
    """
    if explicit_path:
        return os.path.expandvars(os.path.expanduser(explicit_path))

    candidates = candidate_library_paths(backend, platform_info, base_dir, bundled_dir)
    for path in candidates:
        if exists(path):
            return str(path)
    return str(candidates[0])


# =============================================================================
# Loading
# =============================================================================
class NativeLibraryLoader:
    """Binds libllama with ctypes and forces eager initialization."""

    def __init__(
        self,
        platform_info: PlatformInfo,
        cdll: Callable[..., ctypes.CDLL] = ctypes.CDLL,
    ) -> None:
        self._platform = platform_info
        self._cdll = cdll

    def load(self, library_path: str) -> int:
        """Load the library and return the number of usable devices.

        On success LLAMA_CPP_LIB_PATH points at the library directory so the
        llama_cpp binding picks up this exact build.

        Raises:
            NativeLibraryLoadError: On any bind or initialization failure.
        """
        path = Path(library_path)
        if not path.is_file():
            raise NativeLibraryLoadError(
                f"Native library not found: {library_path}", library_path
            )

        try:
            if self._platform.system == OS_LINUX:
                self._preload_dependencies(path.parent)
            library = self._cdll(str(path), mode=ctypes.RTLD_GLOBAL)
            max_devices = library.llama_max_devices
            max_devices.restype = ctypes.c_size_t
            max_devices.argtypes = []
            device_count = int(max_devices())
        except (OSError, AttributeError) as exc:
            raise NativeLibraryLoadError(
                f"Failed to load native library {library_path}: {exc}", library_path
            ) from exc

        os.environ[LLAMA_CPP_LIB_PATH_ENV] = str(path.parent)
        logger.info(
            "Native library loaded",
            library_path=str(path),
            max_devices=device_count,
        )
        return device_count

    def _preload_dependencies(self, directory: Path) -> None:
        for name in LINUX_PRELOAD_LIBRARIES:
            dependency = directory / name
            if dependency.is_file():
                self._cdll(str(dependency), mode=ctypes.RTLD_GLOBAL)
                logger.debug("Preloaded native dependency", library_path=str(dependency))
