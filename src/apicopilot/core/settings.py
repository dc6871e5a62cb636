from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_HOT_RELOAD: bool = False

    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # OpenAPI description compiled into the tool catalog (file wins over URL).
    OPENAPI_SPEC_FILE: Optional[str] = None
    OPENAPI_SPEC_URL: Optional[str] = None

    # REST API the compiled tools are executed against.
    TARGET_API_BASE_URL: str = "http://localhost:3001"
    TARGET_API_TIMEOUT_S: float = 30.0

    UPSTREAM_OPENAI_BASE: str = "https://openrouter.ai/api/v1"
    UPSTREAM_OPENAI_API_KEY: Optional[str] = None
    UPSTREAM_MODEL_NAME: str = "anthropic/claude-3.5-sonnet"
    UPSTREAM_TEMPERATURE: float = 0.1
    UPSTREAM_MAX_TOKENS: int = 2000
    UPSTREAM_TIMEOUT_S: float = 30.0
    UPSTREAM_REFERER: Optional[str] = None
    UPSTREAM_APP_TITLE: Optional[str] = None

    MAX_TOOL_ROUNDS: int = 5

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

settings = Settings()
