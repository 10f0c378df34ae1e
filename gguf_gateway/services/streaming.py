"""One-token lookahead over engine fragment streams.

Engines never announce their last fragment. To mark exactly one frame as
final without buffering the whole response, the most recent fragment is
held back until either the next one arrives (emit held as non-final) or the
stream ends (emit held as final).

Batch requests (several prompts in one request) come in two shapes:

- ``chained_lookahead``: one lookahead across all prompts in order, so only
  the very last frame of the batch is final. Used by the Ollama protocol,
  where ``done: true`` ends the whole response.
- ``per_prompt_lookahead``: one lookahead per prompt, so every prompt index
  gets its own final frame. Used by the OpenAI protocol, where each choice
  carries its own ``finish_reason``.

Prompts in a batch run one after another; every engine stream is closed
before the next one opens, also when the consumer stops early.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import aclosing
from dataclasses import dataclass


PromptStream = Callable[[], AsyncIterator[str]]


@dataclass(frozen=True)
class StreamFrame:
    """One output chunk, ready for a protocol framer."""

    content: str
    is_final: bool
    index: int = 0


async def lookahead(fragments: AsyncIterator[str], index: int = 0) -> AsyncIterator[StreamFrame]:
    """Mark the last fragment of a stream as final.

    An empty stream still produces one empty final frame, so clients always
    see a terminal frame.
    """
    held: str | None = None
    async with aclosing(fragments):
        async for fragment in fragments:
            if held is not None:
                yield StreamFrame(held, False, index)
            held = fragment
    yield StreamFrame(held or "", True, index)


async def _tagged(streams: Sequence[PromptStream]) -> AsyncIterator[tuple[int, str]]:
    for index, open_stream in enumerate(streams):
        async with aclosing(open_stream()) as fragments:
            async for fragment in fragments:
                yield index, fragment


async def chained_lookahead(streams: Sequence[PromptStream]) -> AsyncIterator[StreamFrame]:
    """Lookahead across a whole batch: a single final frame at the very end.

    Frames keep the index of the prompt that produced them. If the last
    prompt produced nothing, the final frame is empty and carries the last
    prompt's index.
    """
    held: tuple[int, str] | None = None
    async with aclosing(_tagged(streams)) as tagged:
        async for item in tagged:
            if held is not None:
                yield StreamFrame(held[1], False, held[0])
            held = item
    last_index = max(len(streams) - 1, 0)
    if held is None or held[0] != last_index:
        if held is not None:
            yield StreamFrame(held[1], False, held[0])
        yield StreamFrame("", True, last_index)
    else:
        yield StreamFrame(held[1], True, held[0])


async def per_prompt_lookahead(streams: Sequence[PromptStream]) -> AsyncIterator[StreamFrame]:
    """Lookahead per prompt: one final frame for every prompt index."""
    for index, open_stream in enumerate(streams):
        async with aclosing(lookahead(open_stream(), index)) as frames:
            async for frame in frames:
                yield frame
