"""Application configuration management."""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    These settings are automatically loaded from the .env file or environment variables.
    The feedback store key should live in the environment, not in code.

    Attributes:
        endpoint_base_url: Root of the image generation endpoint
        default_model: Model used when model selection is unavailable
        fetch_timeout: Wall-clock budget of a single fetch attempt, in seconds
        fetch_attempts: Total attempts per fetch
        fetch_backoff: Fixed wait between fetch attempts, in seconds
        fetch_jitter: Maximum random wait added to the backoff, in seconds
        feedback_url: Base URL of the REST feedback store (optional)
        feedback_api_key: API key of the feedback store
        feedback_timeout: Timeout of feedback store calls, in seconds
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        output_dir: Where the CLI writes accepted images
        enable_gpu: Allow accelerated resampling when a device is present
        run_integration_tests: Whether to run integration tests
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    # Generation endpoint
    endpoint_base_url: str = "https://image.pollinations.ai"
    default_model: str = "flux"
    fetch_timeout: float = 15.0
    fetch_attempts: int = 3
    fetch_backoff: float = 0.6
    fetch_jitter: float = 0.4

    # Feedback store
    feedback_url: Optional[str] = None
    feedback_api_key: Optional[str] = None
    feedback_timeout: float = 10.0

    # Application Settings
    log_level: str = "INFO"
    output_dir: str = "outputs"
    enable_gpu: bool = True

    # Testing
    run_integration_tests: bool = False

    @property
    def feedback_enabled(self) -> bool:
        return bool(self.feedback_url)

    def validate_required_keys(self) -> None:
        """Validate that required keys are present.

        Raises:
            ValueError: If the feedback store is configured without a key
        """
        if self.feedback_url and not self.feedback_api_key:
            raise ValueError(
                "FEEDBACK_API_KEY is required when FEEDBACK_URL is set. "
                "Please set it in your .env file or environment variables."
            )

        if self.fetch_attempts < 1:
            raise ValueError("FETCH_ATTEMPTS must be at least 1")


# Global settings instance
settings = Settings()
