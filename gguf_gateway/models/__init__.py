"""Pydantic wire models for the OpenAI (/v1) and Ollama (/api) protocols."""

__all__: list[str] = []
