"""Platform and GPU detection for native backend selection.

GPU probes run in order of decreasing reliability and the first positive
signal wins:

1. Driver marker file (/proc/driver/nvidia/version, Linux only)
2. Container runtime hint (NVIDIA_VISIBLE_DEVICES)
3. nvidia-smi under a bounded timeout
4. CUDA driver library at a known install path
"""

from __future__ import annotations

import os
import platform
import subprocess
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from gguf_gateway.core.constants import GPU_PROBE_TIMEOUT_SECONDS
from gguf_gateway.core.logging import get_logger


logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================
OS_LINUX = "linux"
OS_WINDOWS = "windows"
OS_DARWIN = "darwin"

ARCH_X64 = "x64"
ARCH_ARM64 = "arm64"

NVIDIA_DRIVER_MARKER = "/proc/driver/nvidia/version"
NVIDIA_VISIBLE_DEVICES_ENV = "NVIDIA_VISIBLE_DEVICES"
NVIDIA_SMI_ARGS = ("--query-gpu=name", "--format=csv,noheader")

LINUX_CUDA_LIBRARIES = (
    "/usr/lib/x86_64-linux-gnu/libcuda.so.1",
    "/usr/lib64/libcuda.so.1",
    "/usr/local/cuda/lib64/libcuda.so.1",
)

_ARCH_ALIASES = {
    "x86_64": ARCH_X64,
    "amd64": ARCH_X64,
    "x64": ARCH_X64,
    "aarch64": ARCH_ARM64,
    "arm64": ARCH_ARM64,
}

_RID_PREFIX = {OS_LINUX: "linux", OS_WINDOWS: "win", OS_DARWIN: "osx"}

_LIBRARY_NAMES = {
    OS_LINUX: "libllama.so",
    OS_WINDOWS: "llama.dll",
    OS_DARWIN: "libllama.dylib",
}

# (os, arch) pairs with no GPU build of the native library
_GPU_UNSUPPORTED = frozenset({(OS_DARWIN, ARCH_ARM64)})


# =============================================================================
# Platform
# =============================================================================
@dataclass(frozen=True)
class PlatformInfo:
    """Normalized operating system and CPU architecture."""

    system: str
    machine: str

    @classmethod
    def current(cls) -> PlatformInfo:
        system = platform.system().lower()
        machine = platform.machine().lower()
        return cls(system=system, machine=_ARCH_ALIASES.get(machine, machine))

    @property
    def runtime_identifier(self) -> str:
        """Runtime directory name, e.g. linux-x64 or osx-arm64."""
        return f"{_RID_PREFIX.get(self.system, self.system)}-{self.machine}"

    @property
    def library_name(self) -> str:
        return _LIBRARY_NAMES.get(self.system, _LIBRARY_NAMES[OS_LINUX])

    @property
    def supports_gpu_backend(self) -> bool:
        return (self.system, self.machine) not in _GPU_UNSUPPORTED


# =============================================================================
# GPU Probing
# =============================================================================
class GpuDetector:
    """Runs the GPU probes for one platform.

    The filesystem, environment and process runner are injectable so each
    probe can be exercised without real hardware.
    """

    def __init__(
        self,
        platform_info: PlatformInfo,
        timeout_seconds: float = GPU_PROBE_TIMEOUT_SECONDS,
        environ: Mapping[str, str] | None = None,
        path_exists: Callable[[str], bool] = os.path.exists,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self._platform = platform_info
        self._timeout = timeout_seconds
        self._environ = os.environ if environ is None else environ
        self._path_exists = path_exists
        self._run = run

    def detect(self) -> str | None:
        """Return the name of the first probe that found a GPU, or None."""
        probes: list[tuple[str, Callable[[], bool]]] = [
            ("driver_marker", self._probe_driver_marker),
            ("container_hint", self._probe_container_hint),
            ("nvidia_smi", self._probe_nvidia_smi),
            ("cuda_library", self._probe_cuda_library),
        ]
        for name, probe in probes:
            if probe():
                logger.info("GPU detected", probe=name)
                return name
        logger.info("No GPU detected")
        return None

    def _probe_driver_marker(self) -> bool:
        return self._platform.system == OS_LINUX and self._path_exists(
            NVIDIA_DRIVER_MARKER
        )

    def _probe_container_hint(self) -> bool:
        value = self._environ.get(NVIDIA_VISIBLE_DEVICES_ENV, "").strip()
        return bool(value) and value.lower() != "void"

    def _probe_nvidia_smi(self) -> bool:
        executable = (
            "nvidia-smi.exe" if self._platform.system == OS_WINDOWS else "nvidia-smi"
        )
        try:
            result = self._run(
                [executable, *NVIDIA_SMI_ARGS],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug("nvidia-smi probe failed", error=str(exc))
            return False
        return result.returncode == 0 and bool((result.stdout or "").strip())

    def _probe_cuda_library(self) -> bool:
        if self._platform.system == OS_LINUX:
            return any(self._path_exists(path) for path in LINUX_CUDA_LIBRARIES)
        if self._platform.system == OS_WINDOWS:
            system_root = self._environ.get("SystemRoot", r"C:\Windows")
            return self._path_exists(os.path.join(system_root, "System32", "nvcuda.dll"))
        return False
