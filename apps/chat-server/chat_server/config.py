"""Configuration for chat-server loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Chat server configuration.

    All fields are loaded from environment variables.  POSTGRES_URL must be
    supplied explicitly; provider keys are optional and a missing key only
    fails the runs that target that provider.
    """

    POSTGRES_URL: str
    DB_SSL: str = ""
    REDIS_URL: str = ""  # Optional, enables live message updates over WebSocket
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Identity is resolved upstream; the proxy forwards the user id in this header
    AUTH_USER_HEADER: str = "X-User-Id"

    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = ""
    GOOGLE_AI_API_KEY: str = ""
    GOOGLE_AI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    OPENROUTER_API_KEY: str = ""
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"

    MAX_TOKENS: int = 1000
    TEMPERATURE: float = 0.7
    SIMULATED_STREAM_DELAY_SECONDS: float = 0.05

    DEFAULT_MODEL: str = "gpt-4o-mini"
    DEFAULT_PROVIDER: str = "openai"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


def get_settings() -> Settings:
    """Return a Settings instance built from the current environment."""
    return Settings()  # type: ignore[call-arg]
