"""Application configuration loaded from environment variables."""

from typing import Dict, Literal, Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    openai_api_key: Optional[str] = Field(
        default=None, description="Secret key for OpenAI APIs."
    )
    openai_base_url: str = "https://api.openai.com/v1"
    openai_timeout_seconds: float = 600.0
    model_fast: str = "gpt-4.1-mini"
    model_quality: str = "gpt-4.1"

    # USD per million tokens: (input, output)
    model_pricing: Dict[str, Tuple[float, float]] = Field(
        default_factory=lambda: {
            "gpt-4.1-mini": (0.40, 1.60),
            "gpt-4.1": (2.00, 8.00),
        }
    )

    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 65.0

    structure_max_output_tokens: int = 16000
    extraction_max_output_tokens: int = 8000
    classification_max_output_tokens: int = 8000
    agent_max_output_tokens: int = 1000
    deliverable_max_output_tokens: int = 30000
    topics_max_output_tokens: int = 4000

    section_filter: Literal["flag", "keywords"] = "flag"
    section_min_chars: int = 50
    extraction_max_chars: int = 12000
    dedup_threshold: float = 0.9
    dedup_containment: bool = False

    classification_mode: Literal["batched", "fan_out"] = "batched"
    classification_batch_size: int = 5
    fan_out_batch_size: int = 3
    batch_delay_seconds: float = 0.5

    max_upload_bytes: int = 50 * 1024 * 1024
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
