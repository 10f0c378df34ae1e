"""API route handlers for gguf-gateway.

Routes:
- openai: /v1/completions, /v1/chat/completions, /v1/embeddings, /v1/models
- ollama: /api/generate, /api/chat, /api/embed, /api/tags
- health: /health, /health/ready
"""

__all__: list[str] = []
