from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Read from OS env and optional .env file in project root.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Upstream chat-completion provider.
    api_key: str = Field(
        "",
        alias="OPENAI_API_KEY",
        description="Bearer token sent to the upstream provider",
    )
    base_url: str = Field(
        "https://api.openai.com/v1",
        alias="OPENAI_BASE_URL",
        description="Provider base URL; /chat/completions is appended",
    )
    organization: Optional[str] = Field(
        default=None,
        alias="OPENAI_ORGANIZATION",
        description="Optional organization id sent as OpenAI-Organization",
    )

    # Model selection.
    default_model: str = Field("gpt-4o-mini", alias="CHAT_DEFAULT_MODEL")
    fallback_model: Optional[str] = Field(
        "gpt-3.5-turbo",
        alias="CHAT_FALLBACK_MODEL",
        description="Model substituted once when the primary model is rate limited",
    )
    fallback_enabled: bool = Field(True, alias="CHAT_FALLBACK_ENABLED")

    # Request shaping.
    timeout_ms: int = Field(
        30_000,
        alias="UPSTREAM_TIMEOUT_MS",
        gt=0,
        description="Upper bound for sending the upstream request and receiving its headers",
    )
    max_output_tokens: int = Field(1024, alias="CHAT_MAX_OUTPUT_TOKENS", gt=0)
    default_temperature: float = Field(0.7, alias="CHAT_DEFAULT_TEMPERATURE")
    context_max_messages: int = Field(12, alias="CHAT_CONTEXT_MAX_MESSAGES", gt=0)

    # Application log level for our chat_gateway logger.
    # Can be overridden via LOG_LEVEL env var, e.g. "DEBUG" while debugging.
    log_level: str = Field(
        "INFO",
        alias="LOG_LEVEL",
        description="Application log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_timezone: Optional[str] = Field(
        default=None,
        alias="LOG_TIMEZONE",
        description="Timezone name for log timestamps, e.g. 'Europe/Berlin'. Defaults to system local time.",
    )
    log_dir: str = Field("logs", alias="LOG_DIR")

    def chat_completions_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"

    def fallback_model_for(self, model: str) -> Optional[str]:
        """
        Return the model to retry with after a rate limit on `model`.

        None when fallback is disabled, no fallback model is configured,
        or the fallback would just repeat the same model.
        """
        if not self.fallback_enabled:
            return None
        candidate = (self.fallback_model or "").strip()
        if not candidate or candidate == model:
            return None
        return candidate


settings = Settings()  # Reads from environment if available
