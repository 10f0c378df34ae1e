"""Ollama-compatible routes (mounted under /api).

Streaming responses are newline-delimited JSON. Every frame has ``done``;
only the last frame of the whole response has ``done: true``.
``stream`` defaults to false.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from gguf_gateway.api.routes.dependencies import get_dispatcher
from gguf_gateway.core.constants import MEDIA_TYPE_NDJSON
from gguf_gateway.models.requests import (
    EmbedRequest,
    GenerateRequest,
    OllamaChatRequest,
)
from gguf_gateway.models.responses import (
    EmbedResponse,
    GenerateResponse,
    ModelDetails,
    OllamaChatResponse,
    OllamaMessage,
    OllamaModel,
    TagsResponse,
    ollama_timestamp,
)
from gguf_gateway.services.dispatcher import Operation, WireProtocol
from gguf_gateway.services.framing import (
    FINISH_REASON_STOP,
    OllamaChatFramer,
    OllamaGenerateFramer,
    render_stream,
)


router = APIRouter(tags=["ollama"])


@router.post("/generate", response_model=None, summary="Generate a completion")
async def generate(request: Request, body: GenerateRequest) -> JSONResponse | StreamingResponse:
    dispatcher = get_dispatcher(request)
    resolved = await dispatcher.resolve(body.model, Operation.GENERATION, WireProtocol.OLLAMA)
    options = dispatcher.options(
        body.options.num_predict, body.options.temperature, body.options.stop
    )
    prompts = dispatcher.validate_prompts(body.prompts, WireProtocol.OLLAMA)
    batch = len(prompts) > 1

    if body.stream:
        frames = dispatcher.stream(resolved, prompts, options, WireProtocol.OLLAMA)
        return StreamingResponse(
            render_stream(frames, OllamaGenerateFramer(resolved.name, batch=batch)),
            media_type=MEDIA_TYPE_NDJSON,
        )

    texts = await dispatcher.generate(resolved, prompts, options)
    responses = [
        GenerateResponse(
            model=resolved.name,
            response=text,
            done=True,
            done_reason=FINISH_REASON_STOP,
            index=i if batch else None,
        ).model_dump(exclude_none=True)
        for i, text in enumerate(texts)
    ]
    return JSONResponse(content=responses if batch else responses[0])


@router.post("/chat", response_model=None, summary="Generate a chat response")
async def chat(request: Request, body: OllamaChatRequest) -> JSONResponse | StreamingResponse:
    dispatcher = get_dispatcher(request)
    resolved = await dispatcher.resolve(body.model, Operation.GENERATION, WireProtocol.OLLAMA)
    options = dispatcher.options(
        body.options.num_predict, body.options.temperature, body.options.stop
    )
    prompt, options = dispatcher.chat_prompt(resolved, body.messages, options)

    if body.stream:
        frames = dispatcher.stream(resolved, [prompt], options, WireProtocol.OLLAMA)
        return StreamingResponse(
            render_stream(frames, OllamaChatFramer(resolved.name)),
            media_type=MEDIA_TYPE_NDJSON,
        )

    [text] = await dispatcher.generate(resolved, [prompt], options)
    response = OllamaChatResponse(
        model=resolved.name,
        message=OllamaMessage(role="assistant", content=text),
        done=True,
        done_reason=FINISH_REASON_STOP,
    )
    return JSONResponse(content=response.model_dump(exclude_none=True))


@router.post("/embed", response_model=EmbedResponse, summary="Generate embeddings")
async def embed(request: Request, body: EmbedRequest) -> EmbedResponse:
    dispatcher = get_dispatcher(request)
    resolved = await dispatcher.resolve(body.model, Operation.EMBEDDINGS, WireProtocol.OLLAMA)
    texts = dispatcher.validate_embedding_input(body.input, WireProtocol.OLLAMA)
    vectors = await dispatcher.embed(resolved, texts)
    return EmbedResponse(model=resolved.name, embeddings=vectors)


@router.get("/tags", response_model=TagsResponse, summary="List local models")
async def tags(request: Request) -> TagsResponse:
    dispatcher = get_dispatcher(request)
    return TagsResponse(
        models=[
            OllamaModel(
                name=descriptor.name,
                model=descriptor.name,
                modified_at=ollama_timestamp(descriptor.modified_at),
                size=descriptor.size_bytes,
                details=ModelDetails(
                    family=descriptor.family,
                    quantization_level=descriptor.quantization,
                ),
            )
            for descriptor in dispatcher.catalog.list_models()
        ]
    )
