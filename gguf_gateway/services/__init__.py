"""Services for gguf-gateway.

Services:
- catalog: model name to GGUF file lookup
- quantization: preference ranking of GGUF variants
- engine_registry: single-flight engine cache
- dispatcher: request validation and generation
- streaming / framing: lookahead frames and SSE / NDJSON output
- prompts: chat templates per model family
"""

__all__: list[str] = []
