"""Visual analysis of generated thumbnails.

Two analysis modes are supported:

``titles``
    One image plus an optional context prompt.  The model is asked for five
    YouTube titles as a JSON array of strings.
``ctr``
    Two images, in the order the caller selected them.  The model is asked
    which one will get the better click-through rate and answers with a JSON
    object ``{winner, reasoning, comparison}``.

The model frequently wraps its JSON in a fenced code block (with or without
a ``json`` tag); fences are stripped before the single parse attempt.  The
parsed JSON is validated immediately into :class:`TitlesOutcome` or
:class:`CtrVerdict` so nothing past this module handles untyped JSON.  A
parse or validation failure is a
:class:`~thumbgen.core.errors.MalformedAnalysisResponseError`, never an
empty or default result.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Sequence
from typing import Protocol

from pydantic import BaseModel, Field, StrictInt, ValidationError, field_validator

from thumbgen.core.errors import (
    GenerationTimeoutError,
    InvalidModeError,
    MalformedAnalysisResponseError,
    ThumbgenError,
    classify_upstream_error,
)
from thumbgen.core.images import GeneratedImage
from thumbgen.core.prompt_builder import build_ctr_prompt, build_titles_prompt

logger = logging.getLogger(__name__)

ANALYSIS_MODES: tuple[str, ...] = ("titles", "ctr")

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


class VisionAnalyzer(Protocol):
    """Anything that can run one visual-analysis call."""

    async def analyze_images(self, prompt: str, images: Sequence[GeneratedImage]) -> str: ...


class TitlesOutcome(BaseModel):
    """Result of the ``titles`` mode."""

    titles: list[str]


class CtrVerdict(BaseModel):
    """Result of the ``ctr`` mode.

    ``winner`` refers to the position of the winning image in the request
    (1 or 2).  ``comparison`` maps criterion names to free text; its keys
    are not fixed.
    """

    winner: StrictInt = Field(..., ge=1, le=2)
    reasoning: str
    comparison: dict[str, str] = Field(default_factory=dict)

    @field_validator("comparison", mode="before")
    @classmethod
    def _stringify_criteria(cls, value):
        # Models sometimes nest a score next to the text; keep it readable.
        if isinstance(value, dict):
            return {
                str(k): v if isinstance(v, str) else json.dumps(v, ensure_ascii=False)
                for k, v in value.items()
            }
        return value


AnalysisOutcome = TitlesOutcome | CtrVerdict


def strip_fences(text: str) -> str:
    """Remove every ```` ```json ```` / ```` ``` ```` marker and trim."""
    return _FENCE_RE.sub("", text or "").strip()


def _load_json(text: str):
    cleaned = strip_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedAnalysisResponseError(f"Invalid JSON: {e}", raw_text=text) from e


def parse_titles(text: str) -> list[str]:
    """Parse a ``titles`` answer into a list of strings.

    Raises:
        MalformedAnalysisResponseError: If the text is not a JSON array of
            strings after fence stripping.
    """
    data = _load_json(text)
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise MalformedAnalysisResponseError("Expected a JSON array of strings", raw_text=text)
    if len(data) != 5:
        logger.warning("Expected 5 titles, model returned %d.", len(data))
    return data


def parse_ctr_verdict(text: str) -> CtrVerdict:
    """Parse a ``ctr`` answer into a :class:`CtrVerdict`.

    Raises:
        MalformedAnalysisResponseError: If the text is not a JSON object with
            a valid ``winner``, ``reasoning`` and ``comparison``.
    """
    data = _load_json(text)
    if not isinstance(data, dict):
        raise MalformedAnalysisResponseError("Expected a JSON object", raw_text=text)
    try:
        return CtrVerdict(**data)
    except ValidationError as e:
        raise MalformedAnalysisResponseError(f"Invalid verdict: {e}", raw_text=text) from e


class AnalysisDispatcher:
    """Routes analysis requests to the vision model by mode."""

    def __init__(self, client: VisionAnalyzer, *, timeout: float | None = None) -> None:
        self._client = client
        self.timeout = timeout

    async def analyze(
        self,
        mode: str,
        images: Sequence[GeneratedImage],
        prompt: str | None = None,
    ) -> AnalysisOutcome:
        """Run one analysis.

        Args:
            mode: ``"titles"`` or ``"ctr"``.
            images: One image (titles) or exactly two (ctr), in order.
            prompt: Context for the titles mode; ignored for ctr.

        Returns:
            A :class:`TitlesOutcome` or a :class:`CtrVerdict`.

        Raises:
            InvalidModeError: Unknown mode; no upstream call is made.
            ValueError: Wrong number of images for the mode.
            MalformedAnalysisResponseError: Unparseable model answer.
            ThumbgenError: Any classified upstream failure.
        """
        if mode not in ANALYSIS_MODES:
            logger.warning("Rejected analysis request with mode %r.", mode)
            raise InvalidModeError(mode)

        if mode == "titles":
            if len(images) < 1:
                raise ValueError("Title suggestion needs one image")
            text = await self._call(build_titles_prompt(prompt), images[:1])
            return TitlesOutcome(titles=self._logged(parse_titles, text))

        if len(images) != 2:
            raise ValueError("CTR comparison needs exactly two images")
        text = await self._call(build_ctr_prompt(), images[:2])
        return self._logged(parse_ctr_verdict, text)

    async def _call(self, prompt: str, images: Sequence[GeneratedImage]) -> str:
        try:
            call = self._client.analyze_images(prompt, list(images))
            if self.timeout is None:
                return await call
            return await asyncio.wait_for(call, self.timeout)
        except asyncio.TimeoutError as e:
            logger.error("Analysis exceeded the %.0fs deadline.", self.timeout)
            raise GenerationTimeoutError(self.timeout) from e
        except ThumbgenError:
            raise
        except Exception as e:
            logger.exception("Analysis call failed.")
            raise classify_upstream_error(e, default_message="Analysis failed") from e

    @staticmethod
    def _logged(parse, text: str):
        try:
            return parse(text)
        except MalformedAnalysisResponseError as e:
            logger.error("Malformed analysis response (%s): %.200r", e.detail, text)
            raise
