"""Prompt templates sent to Gemini.

The user only types a short scene description.  Every generation call
wraps it in a fixed thumbnail style directive parameterised by the aspect
ratio, and both analysis modes use fixed instructions that ask the model to
answer with JSON and nothing else.

Template Structure (generation)::

    [User Prompt]. Create a YouTube thumbnail in [Ratio Phrase], [Style Directive]

Usage
-----
::

    compiled = build_thumbnail_prompt("A red sports car", "9:16")
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Aspect ratios.
# The keys are the only values the API accepts; anything else falls back to
# the default 16:9 landscape thumbnail.
# ---------------------------------------------------------------------------

DEFAULT_ASPECT_RATIO = "16:9"

ASPECT_RATIO_PHRASES: dict[str, str] = {
    "16:9": "16:9 horizontal ratio",
    "9:16": "9:16 vertical ratio (Shorts)",
    "1:1": "1:1 square ratio",
}

_STYLE_DIRECTIVE = (
    "photorealistic, high quality, vibrant colors, eye-catching design, "
    "bold composition, professional photography style."
)

# Used when a single image is regenerated from a result whose prompt was empty.
REGENERATE_FALLBACK_PROMPT = "YouTube thumbnail"

_TITLES_INSTRUCTION = (
    "Analyze this image and propose 5 catchy, high-CTR YouTube titles that match "
    "the visual content and the context: {context}. Return only a JSON array of strings."
)

_TITLES_DEFAULT_CONTEXT = "YouTube video"

_CTR_INSTRUCTION = (
    "Compare these two YouTube thumbnails. Which one will perform better in terms of "
    "Click-Through Rate (CTR)? Consider color psychology, composition, clarity, and "
    "emotional impact. Provide a winner and a detailed justification for both. "
    "Return JSON format: { winner: 1 or 2, reasoning: 'text', comparison: "
    "{ clarity: 'text', colors: 'text', impact: 'text' } }. "
    "Return only the JSON object."
)


def normalize_aspect_ratio(aspect_ratio: str | None) -> str:
    """Return *aspect_ratio* if it is supported, otherwise ``"16:9"``."""
    if aspect_ratio in ASPECT_RATIO_PHRASES:
        return aspect_ratio
    return DEFAULT_ASPECT_RATIO


def build_thumbnail_prompt(prompt: str, aspect_ratio: str | None = None) -> str:
    """Compile the generation prompt from the user's description.

    Args:
        prompt: The user's scene description.  Surrounding whitespace is
            stripped; the text is otherwise passed through verbatim.
        aspect_ratio: One of ``"16:9"``, ``"9:16"`` or ``"1:1"``.  Unknown or
            missing values use the 16:9 phrase.

    Returns:
        The single prompt string sent with every call of the batch.
    """
    ratio_phrase = ASPECT_RATIO_PHRASES[normalize_aspect_ratio(aspect_ratio)]
    return f"{prompt.strip()}. Create a YouTube thumbnail in {ratio_phrase}, {_STYLE_DIRECTIVE}"


def build_titles_prompt(context: str | None = None) -> str:
    """Instruction for the ``titles`` analysis mode."""
    context = (context or "").strip() or _TITLES_DEFAULT_CONTEXT
    return _TITLES_INSTRUCTION.format(context=context)


def build_ctr_prompt() -> str:
    """Instruction for the ``ctr`` analysis mode."""
    return _CTR_INSTRUCTION
