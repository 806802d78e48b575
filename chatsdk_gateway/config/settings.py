from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

IDENTITY_MODES = {"anonymous", "registered"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CSG_", case_sensitive=False)

    base_url: str = "https://demo.chat-sdk.dev"
    host: str = "0.0.0.0"
    port: int = 8080
    debug: bool = False
    log_level: str = "INFO"
    metrics_enabled: bool = True

    identity_mode: str = Field(
        default="anonymous", description="anonymous guest sessions or registered accounts"
    )
    identity_retry_attempts: int = Field(default=3, ge=1)
    identity_retry_delay_s: float = Field(default=1.0, ge=0.0)
    upstream_timeout_s: float = 60.0

    # Egress pool
    egress_proxies: str = Field(default="", description="Comma separated proxy URLs")
    egress_refresh_handles: str = Field(
        default="", description="Comma separated refresh handles, paired with egress_proxies"
    )
    egress_refresh_command: str = "docker restart"
    egress_warmup_s: float = 15.0

    @property
    def normalized_base_url(self) -> str:
        return self.base_url.rstrip("/")

    @property
    def egress_proxy_list(self) -> list[str]:
        return [item.strip() for item in self.egress_proxies.split(",")]

    @property
    def egress_refresh_handle_list(self) -> list[str]:
        if not self.egress_refresh_handles.strip():
            return []
        return [item.strip() for item in self.egress_refresh_handles.split(",")]

    @property
    def identity_mode_normalized(self) -> str:
        return self.identity_mode.strip().lower()


@lru_cache
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
