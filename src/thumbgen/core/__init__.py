"""Core functionality for thumbnail generation.

This module provides the core components of Thumbgen:

- **ThumbgenConfig / config**: Configuration management using Pydantic Settings
- **GeminiClient**: Async wrapper around the google-genai SDK
- **BatchOrchestrator**: Sequential or parallel fan-out of generation calls
- **AnalysisDispatcher**: Title suggestion and CTR comparison
- **errors**: The error taxonomy surfaced to API callers

Architecture Overview
---------------------
1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - All settings prefixed with THUMBGEN_ in .env files

2. **Client Layer** (gemini_client.py):
   - The only module that talks to Gemini
   - Image generation and visual analysis calls

3. **Orchestration Layer** (orchestrator.py, analysis.py):
   - Batch policies, deadlines, single-image regeneration
   - Typed parsing of analysis answers

4. **Support Utilities**:
   - prompt_builder.py: Thumbnail and analysis prompt templates
   - images.py: Image payloads and reference image decoding
   - errors.py: Upstream error classification

Usage Example
-------------
    from thumbgen.core import BatchOrchestrator, GeminiClient, GenerationRequest, config

    orchestrator = BatchOrchestrator.from_config(GeminiClient(config), config)
    images = await orchestrator.generate(GenerationRequest("a red car", count=2))
"""

from thumbgen.core.analysis import AnalysisDispatcher, CtrVerdict, TitlesOutcome
from thumbgen.core.config import ThumbgenConfig, config
from thumbgen.core.gemini_client import GeminiClient
from thumbgen.core.images import GeneratedImage
from thumbgen.core.orchestrator import BatchOrchestrator, GenerationRequest

__all__ = [
    "AnalysisDispatcher",
    "BatchOrchestrator",
    "CtrVerdict",
    "GeminiClient",
    "GeneratedImage",
    "GenerationRequest",
    "ThumbgenConfig",
    "TitlesOutcome",
    "config",
]
