"""Environment-based configuration for the extraction pipeline."""

from pydantic_settings import BaseSettings

from .errors import ConfigurationError


class Settings(BaseSettings):
    """Extraction settings, loaded from environment variables."""

    # Provider connection (OpenAI-compatible endpoint)
    OPENROUTER_API_KEY: str = ""
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    EXTRACTION_MODEL: str = "google/gemini-2.5-flash"

    # Per-request timeout and retry
    EXTRACTION_TIMEOUT_SECONDS: float = 300.0
    EXTRACTION_RETRY_ATTEMPTS: int = 3
    EXTRACTION_RETRY_DELAY: float = 2.0
    EXTRACTION_RETRY_BACKOFF: float = 2.0

    # Batch runs
    EXTRACTION_MAX_WORKERS: int = 4
    EXTRACTION_BATCH_SIZE: int = 20

    # Prompt
    EXTRACTION_TEMPLATE: str = "extended"
    COMMENT_WORD_LIMIT: int = 16

    model_config = {"env_prefix": "", "case_sensitive": True}

    def require_api_key(self) -> str:
        key = self.OPENROUTER_API_KEY.strip()
        if not key:
            raise ConfigurationError(
                "OPENROUTER_API_KEY environment variable not set"
            )
        return key
