"""Upstream delta stream → client dialect (streamed frames or one response)."""

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from enum import Enum
from time import time

from chatsdk_gateway.core.ids import IdGenerator, RandomIdGenerator
from chatsdk_gateway.models.anthropic import MessagesResponse, MessagesUsage, TextBlock
from chatsdk_gateway.models.openai import (
    ChatCompletionResponse,
    Choice,
    ChoiceMessage,
    Usage,
)

logger = logging.getLogger("csg.translation")

TEXT_DELTA = "text-delta"
DONE_MARKER = "[DONE]"
CANNED_REPLY = "BAKA!"


class Dialect(Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


CANNED_MODELS = {
    Dialect.OPENAI: "baka",
    Dialect.ANTHROPIC: "claude-3-opus-20240229",
}


@dataclass(frozen=True)
class UpstreamEvent:
    type: str
    text: str | None = None

    @property
    def is_text_delta(self) -> bool:
        return self.type == TEXT_DELTA and bool(self.text)


@dataclass
class StreamStats:
    chunk_count: int = 0
    response_chars: int = 0


def parse_event_data(data: str) -> UpstreamEvent | None:
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("upstream_line_skipped", extra={"error": "invalid_json"})
        return None
    if not isinstance(parsed, dict) or not isinstance(parsed.get("type"), str):
        return None
    delta = parsed.get("delta")
    return UpstreamEvent(type=parsed["type"], text=delta if isinstance(delta, str) else None)


async def iter_upstream_events(lines: AsyncIterable[str]) -> AsyncIterator[UpstreamEvent]:
    async for line in lines:
        if not line.startswith("data:"):
            continue
        data = line.removeprefix("data:").strip()
        if data == DONE_MARKER:
            break
        event = parse_event_data(data)
        if event is not None:
            yield event


async def canned_reply() -> AsyncIterator[UpstreamEvent]:
    yield UpstreamEvent(type=TEXT_DELTA, text=CANNED_REPLY)


async def stream_translate(
    events: AsyncIterable[UpstreamEvent],
    dialect: Dialect,
    model: str,
    ids: IdGenerator | None = None,
    stats: StreamStats | None = None,
) -> AsyncIterator[str]:
    """Yield one SSE frame per text delta, then the dialect's terminal frame."""
    ids = ids or RandomIdGenerator()
    stats = stats if stats is not None else StreamStats()
    chunk_id = f"chatcmpl-{ids.new_id()}"

    async for event in events:
        if not event.is_text_delta:
            continue
        text = event.text or ""
        stats.chunk_count += 1
        stats.response_chars += len(text)
        if dialect is Dialect.OPENAI:
            yield _sse_data(
                {
                    "id": chunk_id,
                    "object": "chat.completion.chunk",
                    "created": int(time()),
                    "model": model,
                    "choices": [{"index": 0, "delta": {"content": text}}],
                }
            )
        else:
            yield _sse_event(
                "content_block_delta",
                {
                    "type": "content_block_delta",
                    "index": 0,
                    "delta": {"type": "text_delta", "text": text},
                },
            )

    if dialect is Dialect.OPENAI:
        yield f"data: {DONE_MARKER}\n\n"
    else:
        yield _sse_event("message_stop", {"type": "message_stop"})


async def aggregate(
    events: AsyncIterable[UpstreamEvent],
    dialect: Dialect,
    model: str,
    ids: IdGenerator | None = None,
) -> ChatCompletionResponse | MessagesResponse:
    """Concatenate every text delta into the dialect's non-streaming response."""
    ids = ids or RandomIdGenerator()
    parts = [event.text or "" async for event in events if event.is_text_delta]
    text = "".join(parts)
    output_tokens = len(text)

    if dialect is Dialect.OPENAI:
        return ChatCompletionResponse(
            id=f"chatcmpl-{ids.new_id()}",
            created=int(time()),
            model=model,
            choices=[Choice(message=ChoiceMessage(content=text))],
            usage=Usage(
                prompt_tokens=0,
                completion_tokens=output_tokens,
                total_tokens=output_tokens,
            ),
        )
    return MessagesResponse(
        id=f"msg_{ids.new_id()}",
        content=[TextBlock(text=text)],
        model=model,
        usage=MessagesUsage(input_tokens=0, output_tokens=output_tokens),
    )


def _sse_data(payload: dict[str, object]) -> str:
    return f"data: {json.dumps(payload, separators=(',', ':'), ensure_ascii=False)}\n\n"


def _sse_event(name: str, payload: dict[str, object]) -> str:
    return f"event: {name}\n{_sse_data(payload)}"
