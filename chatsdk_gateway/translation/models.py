from chatsdk_gateway.models.openai import ModelCard, ModelList

MODEL_ALIASES: dict[str, str] = {
    "gpt-5.2": "openai/gpt-5.2",
    "claude-opus-4.5": "anthropic/claude-opus-4.5",
    "claude-sonnet-4.5": "anthropic/claude-sonnet-4.5",
    "gemini-3-pro-preview": "google/gemini-3-pro-preview",
}
MODEL_CREATED = 1700000000
MODEL_OWNER = "chat-sdk"


def map_model(name: str) -> str:
    return MODEL_ALIASES.get(name, name)


def list_models() -> ModelList:
    return ModelList(
        data=[
            ModelCard(id=alias, created=MODEL_CREATED, owned_by=MODEL_OWNER)
            for alias in MODEL_ALIASES
        ]
    )
