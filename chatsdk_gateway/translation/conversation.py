"""Client conversations: normalization, triviality check and flattening."""

from dataclasses import dataclass

from chatsdk_gateway.models.anthropic import MessagesRequest
from chatsdk_gateway.models.content import content_text
from chatsdk_gateway.models.openai import ChatMessage

TRIVIAL_KEYWORDS = ("hi", "hello", "test", "测试", "你好", "hey", "ping")
TRIVIAL_MAX_LENGTH = 10
BUILTIN_SYSTEM_PROMPT = "Do not call any tools."


@dataclass(frozen=True)
class ConversationMessage:
    role: str
    text: str


def conversation_from_openai(messages: list[ChatMessage]) -> list[ConversationMessage]:
    return [ConversationMessage(role=m.role, text=content_text(m.content)) for m in messages]


def conversation_from_anthropic(payload: MessagesRequest) -> list[ConversationMessage]:
    conversation: list[ConversationMessage] = []
    # Anthropic carries the system prompt beside the turns, not among them.
    if payload.system is not None:
        conversation.append(ConversationMessage(role="system", text=content_text(payload.system)))
    conversation.extend(
        ConversationMessage(role=m.role, text=content_text(m.content)) for m in payload.messages
    )
    return conversation


def is_trivial(conversation: list[ConversationMessage]) -> bool:
    """Return True for a lone, short greeting or connectivity check."""
    turns = 0
    first_user_text = ""
    for message in conversation:
        if message.role not in {"user", "assistant"}:
            continue
        turns += 1
        if message.role == "user" and not first_user_text:
            first_user_text = message.text

    if turns > 1:
        return False
    if len(first_user_text) >= TRIVIAL_MAX_LENGTH:
        return False
    lowered = first_user_text.lower()
    return any(keyword in lowered for keyword in TRIVIAL_KEYWORDS)


def flatten(conversation: list[ConversationMessage]) -> str:
    """Render the whole conversation as the text of a single upstream message."""
    client_system = next((m.text for m in conversation if m.role == "system"), "")
    if client_system:
        blocks = [f"[System]\n{client_system}\n\n{BUILTIN_SYSTEM_PROMPT}"]
    else:
        blocks = [f"[System]\n{BUILTIN_SYSTEM_PROMPT}"]

    for message in conversation:
        if message.role == "user":
            blocks.append(f"[User]\n{message.text}")
        elif message.role == "assistant":
            blocks.append(f"[Assistant]\n{message.text}")

    return "\n\n".join(blocks)
