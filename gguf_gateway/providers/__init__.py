"""Inference engines for gguf-gateway.

Providers:
- base: InferenceEngine protocol, EngineState, EngineCapabilities
- llamacpp: LlamaCppEngine (llama-cpp-python)
- backends: native libllama selection and loading
"""

from gguf_gateway.providers.base import (
    EngineCapabilities,
    EngineState,
    InferenceEngine,
)
from gguf_gateway.providers.llamacpp import LlamaCppEngine, llamacpp_engine_factory


__all__: list[str] = [
    "EngineCapabilities",
    "EngineState",
    "InferenceEngine",
    "LlamaCppEngine",
    "llamacpp_engine_factory",
]
