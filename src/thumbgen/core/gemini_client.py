"""Async wrapper around the Google Gemini API.

This module provides :class:`GeminiClient`, the single point of contact with
the ``google-genai`` SDK.  It exposes the two remote capabilities the rest of
the application relies on:

- **Image generation** — :meth:`GeminiClient.generate_images` sends a prompt
  plus zero or more reference images to the image-capable model with the
  ``TEXT`` and ``IMAGE`` response modalities, and returns every ``image/*``
  part of the answer.
- **Visual analysis** — :meth:`GeminiClient.analyze_images` sends an
  instruction plus one or two images and returns the raw text answer.

Key Responsibilities
--------------------
- **Lazy client creation** — the SDK client is only built on the first call,
  so the API can start (and serve history) without an API key configured.
- **No re-encoding** — reference images are sent as inline bytes exactly as
  they were received.
- **No error handling policy** — SDK exceptions propagate unchanged; the
  orchestration layer classifies them (see :mod:`thumbgen.core.errors`).

Usage
-----
::

    from thumbgen.core.config import config
    from thumbgen.core.gemini_client import GeminiClient

    client = GeminiClient(config)
    images = await client.generate_images("a red car. Create a YouTube thumbnail ...")
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Sequence

from google import genai
from google.genai import types

from thumbgen.core.config import ThumbgenConfig
from thumbgen.core.errors import InvalidCredentialError
from thumbgen.core.images import GeneratedImage

logger = logging.getLogger(__name__)

RESPONSE_MODALITIES = ["TEXT", "IMAGE"]


def _image_parts(images: Sequence[GeneratedImage]) -> list[types.Part]:
    """Convert image payloads into inline-data parts, byte for byte."""
    return [types.Part.from_bytes(data=img.data, mime_type=img.media_type) for img in images]


def extract_images(response) -> list[GeneratedImage]:
    """Collect every ``image/*`` inline-data part from a Gemini response.

    Text parts (the model often narrates what it drew) and inline data of
    any other media type are discarded silently.

    Args:
        response: A ``GenerateContentResponse`` (or any object of the same
            shape).

    Returns:
        Images in the order the model returned them.
    """
    images: list[GeneratedImage] = []
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            blob = getattr(part, "inline_data", None)
            if blob is None or not getattr(blob, "data", None):
                continue
            media_type = getattr(blob, "mime_type", None) or ""
            if not media_type.lower().startswith("image/"):
                logger.debug("Discarding non-image output part (%s).", media_type or "unknown")
                continue
            data = blob.data
            if isinstance(data, str):
                data = base64.b64decode(data)
            images.append(GeneratedImage(data=data, media_type=media_type))
    return images


class GeminiClient:
    """Thin async client for the image and analysis models.

    Attributes:
        _config (ThumbgenConfig):
            Application configuration (API key and model identifiers).
        _client (genai.Client | None):
            The SDK client, created on first use.
    """

    def __init__(self, config: ThumbgenConfig, client: genai.Client | None = None) -> None:
        """Initialise the client wrapper.

        Args:
            config: Application configuration instance.
            client: Pre-built SDK client.  When omitted one is created
                lazily from ``config.gemini_api_key``.
        """
        self._config = config
        self._client = client

    # -- Public interface ---------------------------------------------------

    async def generate_images(
        self,
        prompt: str,
        reference_images: Sequence[GeneratedImage] = (),
    ) -> list[GeneratedImage]:
        """Run one image-generation call.

        Args:
            prompt: The compiled thumbnail prompt.
            reference_images: Images sent alongside the prompt, in order.

        Returns:
            The ``image/*`` outputs of the call (possibly empty).

        Raises:
            InvalidCredentialError: If no API key is configured.
            google.genai.errors.APIError: On any upstream failure.
        """
        client = self._get_client()
        contents = [types.Part.from_text(text=prompt), *_image_parts(reference_images)]

        logger.info(
            "Calling %s with %d reference image(s).",
            self._config.image_model_id,
            len(reference_images),
        )
        response = await client.aio.models.generate_content(
            model=self._config.image_model_id,
            contents=contents,
            config=types.GenerateContentConfig(response_modalities=RESPONSE_MODALITIES),
        )

        images = extract_images(response)
        logger.info("Model returned %d image(s).", len(images))
        return images

    async def analyze_images(self, prompt: str, images: Sequence[GeneratedImage]) -> str:
        """Run one visual-analysis call and return the model's raw text.

        Args:
            prompt: Mode-specific instruction (asks for JSON only).
            images: One or two images to analyse, in order.

        Returns:
            The text of the answer, ``""`` if the model returned no text.

        Raises:
            InvalidCredentialError: If no API key is configured.
            google.genai.errors.APIError: On any upstream failure.
        """
        client = self._get_client()
        contents = [types.Part.from_text(text=prompt), *_image_parts(images)]

        logger.info("Calling %s for analysis of %d image(s).", self._config.analysis_model_id, len(images))
        response = await client.aio.models.generate_content(
            model=self._config.analysis_model_id,
            contents=contents,
        )
        return getattr(response, "text", None) or ""

    # -- Internals ----------------------------------------------------------

    def _get_client(self) -> genai.Client:
        """Return the SDK client, creating it on first use."""
        if self._client is None:
            if not self._config.gemini_api_key:
                raise InvalidCredentialError()
            self._client = genai.Client(api_key=self._config.gemini_api_key)
            logger.info("Gemini client initialised.")
        return self._client
