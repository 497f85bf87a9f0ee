"""Batch orchestration of thumbnail generation calls.

This module turns one generation request into a list of thumbnails by
issuing between 1 and 4 calls to the image model, and normalises every
failure into the :mod:`thumbgen.core.errors` taxonomy.

Concurrency Policies
--------------------
Two policies are supported, selected per orchestrator (``THUMBGEN_BATCH_MODE``)
or per request:

- **sequential** (default) — calls are issued one at a time, in order, with a
  fixed pause before every call after the first.  The Gemini free tier has a
  strict per-minute quota on the image model, and spacing calls out keeps a
  batch of 4 under it at the cost of latency.
- **parallel** — all calls are issued at once and awaited together.  Results
  are flattened in *issue* order, never completion order.  Much faster, but a
  full batch can trip the quota.

In both modes the batch is all-or-nothing: the first failing call aborts the
batch (remaining parallel calls are cancelled) and no partial result is
returned.  Nothing is retried; the caller can regenerate a single slot with
:meth:`BatchOrchestrator.regenerate`.

Deadlines
---------
Every batch runs under an overall deadline (``request_timeout_seconds``).
When it expires in-flight calls are cancelled and
:class:`~thumbgen.core.errors.GenerationTimeoutError` is raised.  Cancelling
the task that awaits :meth:`BatchOrchestrator.generate` cancels the in-flight
calls as well.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol

from thumbgen.core.config import BatchMode, ThumbgenConfig
from thumbgen.core.errors import (
    EmptyGenerationResultError,
    GenerationTimeoutError,
    ThumbgenError,
    classify_upstream_error,
)
from thumbgen.core.images import GeneratedImage
from thumbgen.core.prompt_builder import (
    REGENERATE_FALLBACK_PROMPT,
    build_thumbnail_prompt,
    normalize_aspect_ratio,
)

logger = logging.getLogger(__name__)

MIN_COUNT = 1
MAX_COUNT = 4
BATCH_MODES: tuple[str, ...] = ("sequential", "parallel")


class ImageGenerator(Protocol):
    """Anything that can run one image-generation call."""

    async def generate_images(
        self,
        prompt: str,
        reference_images: Sequence[GeneratedImage] = (),
    ) -> list[GeneratedImage]: ...


def clamp_count(value: Any, upper: int = MAX_COUNT) -> int:
    """Clamp a requested thumbnail count into ``[1, upper]``.

    Missing, boolean and non-numeric values count as 1.  Numeric strings are
    accepted.  Fractional values round up, so ``2.5`` means three calls.

    Args:
        value: The raw ``count`` value from the request.
        upper: Upper bound (never above 4).

    Returns:
        An integer in ``[1, upper]``.
    """
    upper = max(MIN_COUNT, min(upper, MAX_COUNT))
    if value is None or isinstance(value, bool):
        return MIN_COUNT
    try:
        number = float(value)
    except (TypeError, ValueError):
        return MIN_COUNT
    if math.isnan(number) or number == 0:
        return MIN_COUNT
    if math.isinf(number):
        return upper if number > 0 else MIN_COUNT
    return max(MIN_COUNT, min(math.ceil(number), upper))


@dataclass
class GenerationRequest:
    """One user request for a batch of thumbnails.

    ``count`` and ``aspect_ratio`` are normalised on construction: the count
    is clamped into ``[1, 4]`` and unknown aspect ratios become ``"16:9"``.
    """

    prompt: str
    reference_images: list[GeneratedImage] = field(default_factory=list)
    count: Any = 1
    aspect_ratio: str | None = None

    def __post_init__(self) -> None:
        self.count = clamp_count(self.count)
        self.aspect_ratio = normalize_aspect_ratio(self.aspect_ratio)

    @property
    def compiled_prompt(self) -> str:
        return build_thumbnail_prompt(self.prompt, self.aspect_ratio)


def estimate_progress(
    elapsed_seconds: float,
    count: int,
    seconds_per_image: float = 30.0,
    cap: float = 92.0,
) -> float:
    """Cosmetic progress percentage for a running batch.

    Assumes roughly ``seconds_per_image`` per thumbnail and never reports
    more than ``cap`` percent; reaching 100 is left to the actual response.
    Not tied to call completion in any way.
    """
    total = clamp_count(count) * seconds_per_image
    if elapsed_seconds <= 0 or total <= 0:
        return 0.0
    return round(min(elapsed_seconds / total * 100.0, cap), 1)


def _result_key(images: Sequence[GeneratedImage]) -> str:
    """Stable key identifying a result set by content."""
    digest = hashlib.sha1()
    for img in images:
        digest.update(img.media_type.encode("utf-8"))
        digest.update(img.data)
    return digest.hexdigest()


class BatchOrchestrator:
    """Issues batches of image-generation calls under a concurrency policy.

    Attributes:
        _client (ImageGenerator):
            Image-generation client, usually a
            :class:`~thumbgen.core.gemini_client.GeminiClient`.
        mode (str):
            Default policy, ``"sequential"`` or ``"parallel"``.
        delay_seconds (float):
            Pause before calls 2..N in sequential mode.
        max_count (int):
            Upper bound for ``count``.
        timeout (float | None):
            Default overall deadline for one batch.
    """

    def __init__(
        self,
        client: ImageGenerator,
        *,
        mode: BatchMode = "sequential",
        delay_seconds: float = 8.0,
        max_count: int = MAX_COUNT,
        timeout: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if mode not in BATCH_MODES:
            raise ValueError(f"Unknown batch mode: {mode}")
        self._client = client
        self.mode = mode
        self.delay_seconds = delay_seconds
        self.max_count = max_count
        self.timeout = timeout
        self._sleep = sleep

        # (result key, index) -> [lock, holders]; entries are dropped once idle.
        self._slot_locks: dict[tuple[str, int], list] = {}

    @classmethod
    def from_config(cls, client: ImageGenerator, config: ThumbgenConfig) -> BatchOrchestrator:
        """Build an orchestrator from the application configuration."""
        return cls(
            client,
            mode=config.batch_mode,
            delay_seconds=config.sequential_delay_seconds,
            max_count=config.max_batch_count,
            timeout=config.request_timeout_seconds,
        )

    # -- Batch generation ---------------------------------------------------

    async def generate(
        self,
        request: GenerationRequest,
        *,
        mode: BatchMode | None = None,
        timeout: float | None = None,
    ) -> list[GeneratedImage]:
        """Generate a batch of thumbnails.

        Args:
            request: The normalised generation request.
            mode: Override of the default policy for this batch.
            timeout: Override of the default deadline, in seconds.

        Returns:
            Every kept image, in call order (sequential) or issue order
            (parallel).

        Raises:
            QuotaExceededError: The quota was hit on any call.
            InvalidCredentialError: The API key is missing or rejected.
            EmptyGenerationResultError: No call returned an image.
            GenerationTimeoutError: The deadline expired.
            UpstreamError: Any other failure.
        """
        mode = mode or self.mode
        if mode not in BATCH_MODES:
            raise ValueError(f"Unknown batch mode: {mode}")
        count = clamp_count(request.count, self.max_count)
        prompt = request.compiled_prompt
        timeout = self.timeout if timeout is None else timeout

        logger.info(
            "Starting %s batch of %d thumbnail(s) (aspect=%s, references=%d).",
            mode,
            count,
            request.aspect_ratio,
            len(request.reference_images),
        )

        if mode == "parallel":
            run = self._run_parallel(prompt, request.reference_images, count)
        else:
            run = self._run_sequential(prompt, request.reference_images, count)

        images = await self._guard(run, timeout)

        if not images:
            logger.warning("Batch finished without producing any image.")
            raise EmptyGenerationResultError()

        logger.info("Batch complete: %d image(s).", len(images))
        return images

    async def _run_sequential(
        self,
        prompt: str,
        reference_images: Sequence[GeneratedImage],
        count: int,
    ) -> list[GeneratedImage]:
        images: list[GeneratedImage] = []
        for i in range(count):
            if i > 0:
                logger.debug("Waiting %.1fs before call %d/%d.", self.delay_seconds, i + 1, count)
                await self._sleep(self.delay_seconds)
            images.extend(await self._call(prompt, reference_images, i))
        return images

    async def _run_parallel(
        self,
        prompt: str,
        reference_images: Sequence[GeneratedImage],
        count: int,
    ) -> list[GeneratedImage]:
        tasks = [
            asyncio.ensure_future(self._call(prompt, reference_images, i)) for i in range(count)
        ]
        try:
            # gather() preserves issue order whatever the completion order.
            per_call = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return [img for images in per_call for img in images]

    async def _call(
        self,
        prompt: str,
        reference_images: Sequence[GeneratedImage],
        index: int,
    ) -> list[GeneratedImage]:
        """One upstream call, keeping only ``image/*`` outputs."""
        outputs = await self._client.generate_images(prompt, list(reference_images))
        kept = [img for img in outputs if img.is_image]
        if len(kept) != len(outputs):
            logger.debug("Call %d: dropped %d non-image output(s).", index + 1, len(outputs) - len(kept))
        return kept

    async def _guard(self, run: Awaitable[list[GeneratedImage]], timeout: float | None):
        """Await *run* under *timeout* and classify whatever it raises."""
        try:
            if timeout is None:
                return await run
            return await asyncio.wait_for(run, timeout)
        except asyncio.TimeoutError as e:
            logger.error("Generation exceeded the %.0fs deadline.", timeout)
            raise GenerationTimeoutError(timeout) from e
        except ThumbgenError:
            raise
        except Exception as e:
            logger.exception("Generation failed.")
            raise classify_upstream_error(e) from e

    # -- Single-image regeneration ------------------------------------------

    async def regenerate(
        self,
        prompt: str,
        current_images: Sequence[GeneratedImage],
        index: int,
        *,
        reference_images: Sequence[GeneratedImage] = (),
        aspect_ratio: str | None = None,
        result_key: str | None = None,
        timeout: float | None = None,
        on_success: Callable[[list[GeneratedImage], GeneratedImage], Any] | None = None,
    ) -> tuple[list[GeneratedImage], GeneratedImage]:
        """Replace the image at *index* with a freshly generated one.

        Issues exactly one call.  The input sequence is never mutated: the
        returned list is a copy with only position *index* replaced.

        Concurrent regenerations of the same slot of the same result are
        serialised: the upstream call and *on_success* both run under the
        slot lock, so anything *on_success* persists (the history patch)
        is applied in the same order the calls completed.  Each caller still
        gets a copy of its own *current_images*, and the last regeneration
        of a slot is the one that stays in the history.

        Args:
            prompt: Original prompt; empty means ``"YouTube thumbnail"``.
            current_images: The result set being edited.
            index: Position to replace.
            reference_images: Reference images of the original request.
            aspect_ratio: Aspect ratio of the original request.
            result_key: Identifies the result set for slot locking, e.g. its
                history entry id.  Defaults to a digest of *current_images*.
            timeout: Override of the default deadline, in seconds.
            on_success: Called with ``(updated_images, new_image)`` while
                the slot lock is still held.  Not called on failure.

        Returns:
            ``(updated_images, new_image)``.

        Raises:
            IndexError: If *index* is outside *current_images*.
            ThumbgenError: On any upstream failure (sequence unchanged).
        """
        if not 0 <= index < len(current_images):
            raise IndexError(f"Image index {index} out of range (0-{len(current_images) - 1})")

        request = GenerationRequest(
            prompt=prompt.strip() or REGENERATE_FALLBACK_PROMPT,
            reference_images=list(reference_images),
            count=1,
            aspect_ratio=aspect_ratio,
        )
        key = (result_key or _result_key(current_images), index)
        timeout = self.timeout if timeout is None else timeout

        async with self._slot_lock(key):
            logger.info("Regenerating image %d.", index + 1)
            images = await self._guard(
                self._call(request.compiled_prompt, request.reference_images, 0), timeout
            )
            if not images:
                raise EmptyGenerationResultError()

            updated = list(current_images)
            updated[index] = images[0]
            if on_success is not None:
                on_success(updated, images[0])

        return updated, images[0]

    @asynccontextmanager
    async def _slot_lock(self, key: tuple[str, int]) -> AsyncIterator[None]:
        entry = self._slot_locks.get(key)
        if entry is None:
            entry = self._slot_locks[key] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._slot_locks[key]
