"""Thumbgen - YouTube thumbnail generation and analysis on Google Gemini."""

__version__ = "0.1.0"

from thumbgen.core.config import ThumbgenConfig, config
from thumbgen.core.orchestrator import BatchOrchestrator, GenerationRequest

__all__ = [
    "BatchOrchestrator",
    "GenerationRequest",
    "ThumbgenConfig",
    "config",
]
