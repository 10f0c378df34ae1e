"""Shared constants for gguf-gateway.

Usage:
    from gguf_gateway.core.constants import BACKEND_CPU, MEDIA_TYPE_SSE
"""

# =============================================================================
# Native Backends
# =============================================================================

BACKEND_CPU = "cpu"
BACKEND_GPU = "gpu"

# Bound on the vendor diagnostic tool probe
GPU_PROBE_TIMEOUT_SECONDS = 5.0

# Environment variable read by llama-cpp-python to locate libllama
LLAMA_CPP_LIB_PATH_ENV = "LLAMA_CPP_LIB_PATH"


# =============================================================================
# Engine Defaults
# =============================================================================

DEFAULT_CONTEXT_LENGTH = 2048
DEFAULT_MAX_TOKENS = 128
DEFAULT_TEMPERATURE = 0.6

# Token limits below this floor are raised to it
MIN_MAX_TOKENS = 100
MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0

# Stop sequences for chat generations when the request supplies none
DEFAULT_CHAT_STOP_SEQUENCES: tuple[str, ...] = ("user:", "User:", "human:", "Human:")


# =============================================================================
# HTTP
# =============================================================================

REQUEST_ID_HEADER = "x-request-id"
MEDIA_TYPE_SSE = "text/event-stream"
MEDIA_TYPE_NDJSON = "application/x-ndjson"
OLLAMA_PATH_PREFIX = "/api/"
