"""Core configuration, logging and exceptions for gguf-gateway."""

__all__: list[str] = []
