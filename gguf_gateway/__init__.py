"""gguf-gateway: local GGUF inference gateway.

Serves GGUF model weights through llama-cpp-python behind an
OpenAI-compatible surface (/v1) and an Ollama-compatible surface (/api).
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
