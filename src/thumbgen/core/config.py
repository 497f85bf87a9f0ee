"""Configuration management for the Thumbgen thumbnail generator.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the THUMBGEN_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (THUMBGEN_* prefix)
2. .env file in the project root
3. Default values defined in ThumbgenConfig

The Gemini API key is the one exception to the prefix rule: it is also read
from the ``GEMINI_API_KEY``, ``GOOGLE_API_KEY`` and
``GOOGLE_GENERATIVE_AI_API_KEY`` variables that Google's own tooling uses.

Example .env file:
    THUMBGEN_GEMINI_API_KEY=AIza...
    THUMBGEN_BATCH_MODE=parallel
    THUMBGEN_SEQUENTIAL_DELAY_SECONDS=8
    THUMBGEN_DATA_DIR=data

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.

Usage Example
-------------
    from thumbgen.core.config import config

    print(config.image_model_id)
    print(config.history_file)

Batch Mode and the Gemini Quota
-------------------------------
The free Gemini tier enforces a strict per-minute quota on the image model.

- ``sequential`` (default): calls are issued one at a time with
  ``sequential_delay_seconds`` between them.  Slow, but stays under quota.
- ``parallel``: all calls are issued at once.  Fast, but a batch of 4 can
  trip the quota and then the whole batch fails with a 429.
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BatchMode = Literal["sequential", "parallel"]


class ThumbgenConfig(BaseSettings):
    """Main configuration for the Thumbgen service.

    Attributes
    ----------
    Gemini Settings:
        gemini_api_key : str | None
            API key for the Gemini Developer API.
        image_model_id : str
            Model used for thumbnail generation (must support image output).
        analysis_model_id : str
            Model used for title suggestion and CTR comparison.

    Batch Settings:
        batch_mode : Literal["sequential", "parallel"]
            Default concurrency policy for batch generation.
        sequential_delay_seconds : float
            Pause before every call after the first in sequential mode.
        max_batch_count : int
            Upper bound for the number of thumbnails per request.
        request_timeout_seconds : float
            Overall deadline for one generation request.
        analysis_timeout_seconds : float
            Overall deadline for one analysis request.

    Input Limits:
        max_reference_images : int
            Maximum number of reference images accepted per request.
        max_prompt_length : int
            Maximum prompt length in characters.

    History:
        data_dir : Path
            Directory holding ``history.json``.
        history_limit : int
            Number of past generations kept, most recent first.

    Server Settings:
        server_host : str
            Bind address for uvicorn.
        server_port : int
            Port for uvicorn.
        log_level : str
            Root logging level used by the CLI entry point.

    Examples
    --------
        >>> custom_config = ThumbgenConfig(batch_mode="parallel", _env_file=None)
        >>> custom_config.batch_mode
        'parallel'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="THUMBGEN_",
        case_sensitive=False,
        extra="ignore",
    )

    # Gemini settings
    gemini_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "gemini_api_key",
            "THUMBGEN_GEMINI_API_KEY",
            "GEMINI_API_KEY",
            "GOOGLE_API_KEY",
            "GOOGLE_GENERATIVE_AI_API_KEY",
        ),
        description="API key for the Gemini Developer API",
    )
    image_model_id: str = Field(
        default="gemini-3-pro-image-preview",
        description="Gemini model used to generate thumbnails",
    )
    analysis_model_id: str = Field(
        default="gemini-3-pro-image-preview",
        description="Gemini model used for title and CTR analysis",
    )

    # Batch settings
    batch_mode: BatchMode = Field(
        default="sequential",
        description="Batch concurrency policy (sequential is quota-safe, parallel is fast)",
    )
    sequential_delay_seconds: float = Field(
        default=8.0,
        description="Delay between calls in sequential mode (free tier quota)",
        ge=0.0,
    )
    max_batch_count: int = Field(default=4, ge=1, le=4)
    request_timeout_seconds: float = Field(
        default=120.0,
        description="Overall deadline for one generation request",
        gt=0.0,
    )
    analysis_timeout_seconds: float = Field(
        default=60.0,
        description="Overall deadline for one analysis request",
        gt=0.0,
    )

    # Input limits
    max_reference_images: int = Field(default=8, ge=0, le=16)
    max_prompt_length: int = Field(default=1000, ge=1)

    # History
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory for persisted history",
    )
    history_limit: int = Field(default=20, ge=1)

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=8000,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: str = Field(default="INFO")

    def __init__(self, **kwargs):
        """Initialize configuration and create the data directory.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def history_file(self) -> Path:
        """Path of the JSON file holding the generation history."""
        return self.data_dir / "history.json"


# Global configuration instance, loaded from THUMBGEN_* variables and .env.
config = ThumbgenConfig()
