from pydantic import BaseModel, ConfigDict


class ContentBlock(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    text: str | None = None


# Both client dialects accept either a bare string or a list of typed blocks.
MessageContent = str | list[ContentBlock]


def content_text(content: MessageContent | None) -> str:
    """Collapse message content to plain text, keeping only ``text`` blocks."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return "".join(block.text or "" for block in content if block.type == "text")
