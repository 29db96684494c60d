"""Configuration settings for the application."""

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # Model service configuration
    MODEL_PROVIDER: str = "gemini"  # Options: gemini, openai, anthropic
    GEMINI_API_KEY: str | None = None
    GEMINI_MODEL: str = "gemini-2.5-flash"
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-haiku-4-5"
    ANTHROPIC_MAX_TOKENS: int = 8192  # the messages API requires an explicit cap
    HTTP_TIMEOUT: float = 30.0
    MODEL_DEADLINE: float | None = None  # seconds per turn, None waits for the service

    # Guard configuration
    MAX_INPUT_LENGTH: int = 800
    INPUT_DENYLIST: List[str] = ["ignore previous", "sudo", "rm -rf", "<script>"]
    MAX_TOOL_ROUNDS: int = 5

    # Example tools
    GITHUB_API_URL: str = "https://api.github.com"

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
