"""HTTP layer for gguf-gateway."""

__all__: list[str] = []
