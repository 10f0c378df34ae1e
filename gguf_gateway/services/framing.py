"""Wire framing for streamed completions.

Turns StreamFrames into protocol text:

- OpenAI: Server-Sent Events, ``data: {json}\\n\\n`` per frame, the final
  frame of each choice carries ``finish_reason: "stop"``, and the stream
  ends with ``data: [DONE]\\n\\n``.
- Ollama: newline-delimited JSON, ``done: false`` on every frame except the
  last, which has ``done: true`` and ``done_reason: "stop"``. No sentinel.
"""

from __future__ import annotations

import json
import time
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any, Protocol

from gguf_gateway.core.exceptions import GatewayError
from gguf_gateway.core.logging import get_logger
from gguf_gateway.models.responses import (
    ChatCompletionChunk,
    ChunkChoice,
    ChunkDelta,
    CompletionChoice,
    CompletionResponse,
    GenerateResponse,
    OllamaChatResponse,
    OllamaMessage,
)
from gguf_gateway.services.streaming import StreamFrame


logger = get_logger(__name__)

SSE_DONE = "data: [DONE]\n\n"
FINISH_REASON_STOP = "stop"


class StreamFramer(Protocol):
    def frame(self, frame: StreamFrame) -> str: ...

    def error(self, exc: Exception) -> str: ...

    def terminal(self) -> str: ...


def _error_message(exc: Exception) -> str:
    return exc.message if isinstance(exc, GatewayError) else str(exc)


# =============================================================================
# OpenAI (SSE)
# =============================================================================


class _OpenAIFramer:
    def __init__(self, response_id: str, model: str, created: int | None = None) -> None:
        self.response_id = response_id
        self.model = model
        self.created = created if created is not None else int(time.time())

    def error(self, exc: Exception) -> str:
        payload: dict[str, Any] = {
            "error": {
                "message": _error_message(exc),
                "type": "server_error",
                "param": None,
                "code": getattr(exc, "error_code", None),
            }
        }
        return f"data: {json.dumps(payload)}\n\n"

    def terminal(self) -> str:
        return SSE_DONE


class OpenAICompletionFramer(_OpenAIFramer):
    """text_completion chunks."""

    def frame(self, frame: StreamFrame) -> str:
        chunk = CompletionResponse(
            id=self.response_id,
            created=self.created,
            model=self.model,
            choices=[
                CompletionChoice(
                    text=frame.content,
                    index=frame.index,
                    finish_reason=FINISH_REASON_STOP if frame.is_final else None,
                )
            ],
        )
        return chunk.to_sse()


class OpenAIChatFramer(_OpenAIFramer):
    """chat.completion.chunk deltas; the first delta of a choice names the role."""

    def __init__(self, response_id: str, model: str, created: int | None = None) -> None:
        super().__init__(response_id, model, created)
        self._started: set[int] = set()

    def frame(self, frame: StreamFrame) -> str:
        role = None
        if frame.index not in self._started:
            self._started.add(frame.index)
            role = "assistant"
        chunk = ChatCompletionChunk(
            id=self.response_id,
            created=self.created,
            model=self.model,
            choices=[
                ChunkChoice(
                    index=frame.index,
                    delta=ChunkDelta(role=role, content=frame.content),
                    finish_reason=FINISH_REASON_STOP if frame.is_final else None,
                )
            ],
        )
        return chunk.to_sse()


# =============================================================================
# Ollama (NDJSON)
# =============================================================================


class _OllamaFramer:
    def __init__(self, model: str) -> None:
        self.model = model

    def error(self, exc: Exception) -> str:
        return json.dumps({"error": _error_message(exc)}) + "\n"

    def terminal(self) -> str:
        return ""


class OllamaGenerateFramer(_OllamaFramer):
    """/api/generate frames. ``index`` is written only for batch requests."""

    def __init__(self, model: str, batch: bool = False) -> None:
        super().__init__(model)
        self.batch = batch

    def frame(self, frame: StreamFrame) -> str:
        return GenerateResponse(
            model=self.model,
            response=frame.content,
            done=frame.is_final,
            done_reason=FINISH_REASON_STOP if frame.is_final else None,
            index=frame.index if self.batch else None,
        ).to_ndjson()


class OllamaChatFramer(_OllamaFramer):
    """/api/chat frames carrying ``message: {role, content}``."""

    def frame(self, frame: StreamFrame) -> str:
        return OllamaChatResponse(
            model=self.model,
            message=OllamaMessage(role="assistant", content=frame.content),
            done=frame.is_final,
            done_reason=FINISH_REASON_STOP if frame.is_final else None,
        ).to_ndjson()


# =============================================================================
# Rendering
# =============================================================================


async def render_stream(
    frames: AsyncIterator[StreamFrame], framer: StreamFramer
) -> AsyncIterator[str]:
    """Frame a stream, reporting mid-stream failures in-band.

    The HTTP status is already sent once streaming starts, so an engine
    failure becomes an error payload followed by the protocol terminator.
    """
    try:
        async with aclosing(frames):
            async for frame in frames:
                yield framer.frame(frame)
    except Exception as exc:
        logger.exception("Stream failed after response started", error=str(exc))
        yield framer.error(exc)
    terminal = framer.terminal()
    if terminal:
        yield terminal
