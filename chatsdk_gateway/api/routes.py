from typing import cast

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, StreamingResponse

from chatsdk_gateway.core.errors import request_id_from_request
from chatsdk_gateway.metrics import metrics_router
from chatsdk_gateway.models.anthropic import MessagesRequest, MessagesResponse
from chatsdk_gateway.models.openai import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    ModelList,
)
from chatsdk_gateway.services.dispatcher import DialectCall, RequestDispatcher
from chatsdk_gateway.translation.conversation import (
    conversation_from_anthropic,
    conversation_from_openai,
)
from chatsdk_gateway.translation.models import list_models
from chatsdk_gateway.translation.stream import Dialect

router = APIRouter()
router.include_router(metrics_router)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get("/health", response_class=PlainTextResponse)
def health() -> str:
    return "OK"


@router.get("/v1/models", response_model=ModelList)
def models() -> ModelList:
    return list_models()


@router.post("/v1/chat/completions", response_model=ChatCompletionResponse)
async def chat_completions(
    request: Request, payload: ChatCompletionRequest
) -> ChatCompletionResponse | StreamingResponse:
    dispatcher: RequestDispatcher = request.app.state.dispatcher
    call = DialectCall(
        dialect=Dialect.OPENAI,
        model=payload.model,
        conversation=conversation_from_openai(payload.messages),
        stream=payload.stream,
    )
    request_id = request_id_from_request(request)
    if payload.stream:
        frames = await dispatcher.stream(request_id, call)
        return StreamingResponse(frames, media_type="text/event-stream", headers=SSE_HEADERS)
    return cast(ChatCompletionResponse, await dispatcher.complete(request_id, call))


@router.post("/v1/messages", response_model=MessagesResponse)
async def messages(
    request: Request, payload: MessagesRequest
) -> MessagesResponse | StreamingResponse:
    dispatcher: RequestDispatcher = request.app.state.dispatcher
    call = DialectCall(
        dialect=Dialect.ANTHROPIC,
        model=payload.model,
        conversation=conversation_from_anthropic(payload),
        stream=payload.stream,
    )
    request_id = request_id_from_request(request)
    if payload.stream:
        frames = await dispatcher.stream(request_id, call)
        return StreamingResponse(frames, media_type="text/event-stream", headers=SSE_HEADERS)
    return cast(MessagesResponse, await dispatcher.complete(request_id, call))
