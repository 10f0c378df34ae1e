"""OpenAI-compatible routes (mounted under /v1).

Streaming responses are Server-Sent Events terminated by ``data: [DONE]``.
The model is resolved before the StreamingResponse is created so 400, 403
and 404 errors keep their status codes.
"""

from __future__ import annotations

import time

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from gguf_gateway.api.routes.dependencies import get_dispatcher, get_request_id
from gguf_gateway.core.constants import MEDIA_TYPE_SSE
from gguf_gateway.models.requests import (
    ChatCompletionRequest,
    CompletionRequest,
    EmbeddingRequest,
)
from gguf_gateway.models.responses import (
    ChatChoice,
    ChatChoiceMessage,
    ChatCompletionResponse,
    CompletionChoice,
    CompletionResponse,
    EmbeddingData,
    EmbeddingResponse,
    ModelCard,
    ModelList,
)
from gguf_gateway.services.dispatcher import Operation, WireProtocol
from gguf_gateway.services.framing import (
    FINISH_REASON_STOP,
    OpenAIChatFramer,
    OpenAICompletionFramer,
    render_stream,
)


router = APIRouter(tags=["openai"])

ERROR_RESPONSES: dict[int | str, dict[str, str]] = {
    400: {"description": "Missing model or invalid request fields"},
    403: {"description": "Model does not support the operation"},
    404: {"description": "Model not found"},
    500: {"description": "Generation failed"},
    503: {"description": "Native backend unavailable"},
}


@router.post(
    "/completions",
    response_model=CompletionResponse,
    summary="Create completion",
    responses=ERROR_RESPONSES,
)
async def create_completion(
    request: Request, body: CompletionRequest
) -> CompletionResponse | StreamingResponse:
    dispatcher = get_dispatcher(request)
    resolved = await dispatcher.resolve(body.model, Operation.GENERATION, WireProtocol.OPENAI)
    options = dispatcher.options(body.max_tokens, body.temperature, body.stop)
    prompts = dispatcher.validate_prompts(body.prompts, WireProtocol.OPENAI)
    response_id = f"cmpl-{get_request_id(request)}"

    if body.stream:
        frames = dispatcher.stream(resolved, prompts, options, WireProtocol.OPENAI)
        return StreamingResponse(
            render_stream(frames, OpenAICompletionFramer(response_id, resolved.name)),
            media_type=MEDIA_TYPE_SSE,
        )

    texts = await dispatcher.generate(resolved, prompts, options)
    return CompletionResponse(
        id=response_id,
        created=int(time.time()),
        model=resolved.name,
        choices=[
            CompletionChoice(text=text, index=i, finish_reason=FINISH_REASON_STOP)
            for i, text in enumerate(texts)
        ],
    )


@router.post(
    "/chat/completions",
    response_model=ChatCompletionResponse,
    summary="Create chat completion",
    responses=ERROR_RESPONSES,
)
async def create_chat_completion(
    request: Request, body: ChatCompletionRequest
) -> ChatCompletionResponse | StreamingResponse:
    dispatcher = get_dispatcher(request)
    resolved = await dispatcher.resolve(body.model, Operation.GENERATION, WireProtocol.OPENAI)
    options = dispatcher.options(body.token_limit, body.temperature, body.stop)
    prompt, options = dispatcher.chat_prompt(resolved, body.messages, options)
    response_id = f"chatcmpl-{get_request_id(request)}"

    if body.stream:
        frames = dispatcher.stream(resolved, [prompt], options, WireProtocol.OPENAI)
        return StreamingResponse(
            render_stream(frames, OpenAIChatFramer(response_id, resolved.name)),
            media_type=MEDIA_TYPE_SSE,
        )

    [text] = await dispatcher.generate(resolved, [prompt], options)
    return ChatCompletionResponse(
        id=response_id,
        created=int(time.time()),
        model=resolved.name,
        choices=[
            ChatChoice(
                index=0,
                message=ChatChoiceMessage(role="assistant", content=text),
                finish_reason=FINISH_REASON_STOP,
            )
        ],
    )


@router.post(
    "/embeddings",
    response_model=EmbeddingResponse,
    summary="Create embeddings",
    responses=ERROR_RESPONSES,
)
async def create_embeddings(request: Request, body: EmbeddingRequest) -> EmbeddingResponse:
    dispatcher = get_dispatcher(request)
    resolved = await dispatcher.resolve(body.model, Operation.EMBEDDINGS, WireProtocol.OPENAI)
    texts = dispatcher.validate_embedding_input(body.input, WireProtocol.OPENAI)
    vectors = await dispatcher.embed(resolved, texts)
    return EmbeddingResponse(
        data=[EmbeddingData(index=i, embedding=v) for i, v in enumerate(vectors)],
        model=resolved.name,
    )


@router.get("/models", response_model=ModelList, summary="List models")
async def list_models(request: Request) -> ModelList:
    dispatcher = get_dispatcher(request)
    return ModelList(
        data=[
            ModelCard(
                id=descriptor.name,
                created=int(descriptor.modified_at.timestamp()) if descriptor.modified_at else 0,
            )
            for descriptor in dispatcher.catalog.list_models()
        ]
    )
