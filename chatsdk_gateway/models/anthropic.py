from typing import Literal

from pydantic import BaseModel, Field

from chatsdk_gateway.models.content import MessageContent


class AnthropicMessage(BaseModel):
    role: str
    content: MessageContent | None = None


class MessagesRequest(BaseModel):
    model: str
    messages: list[AnthropicMessage] = Field(min_length=1)
    system: MessageContent | None = None
    stream: bool = False
    max_tokens: int | None = None


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class MessagesUsage(BaseModel):
    input_tokens: int
    output_tokens: int


class MessagesResponse(BaseModel):
    id: str
    type: Literal["message"] = "message"
    role: Literal["assistant"] = "assistant"
    content: list[TextBlock]
    model: str
    stop_reason: Literal["end_turn"] = "end_turn"
    stop_sequence: str | None = None
    usage: MessagesUsage
