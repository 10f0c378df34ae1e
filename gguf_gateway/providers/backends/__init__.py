"""
Native compute backend selection.

Picks the CPU or GPU build of libllama for this machine, loads it once per
process, and falls back to CPU if the GPU build cannot be loaded.

Exports:
    BackendSelector: Single-shot selection and loading
    BackendDescriptor: Immutable selection outcome
    PlatformInfo: Normalized OS / architecture
    GpuDetector: Ordered GPU probes

Example:
    >>> from gguf_gateway.providers.backends import BackendSelector
    >>> descriptor = BackendSelector().configure(get_settings())
    >>> descriptor.name, descriptor.loaded
    ('gpu', True)
"""

from .detection import GpuDetector, PlatformInfo
from .library import NativeLibraryLoader, NativeLibraryLoadError, resolve_library_path
from .selector import BackendDescriptor, BackendSelector, SelectorState

__all__ = [
    "BackendDescriptor",
    "BackendSelector",
    "GpuDetector",
    "NativeLibraryLoadError",
    "NativeLibraryLoader",
    "PlatformInfo",
    "SelectorState",
    "resolve_library_path",
]
