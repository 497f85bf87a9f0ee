"""Pydantic request models for the Thumbgen API.

These models define the JSON schema for every POST endpoint.  FastAPI uses
them for automatic request validation and OpenAPI documentation.  Field
names follow the frontend's camelCase wire format (``aspectRatio``,
``mediaType`` ...); snake_case names are accepted as well.

Models
------
ImagePayload
    One image as ``{data, mediaType}`` with base64 ``data``.
GenerateRequest
    Payload for ``POST /generate``.
AnalyzeRequest
    Payload for ``POST /analyze``.
RegenerateRequest
    Payload for ``POST /api/regenerate``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from thumbgen.core.config import BatchMode
from thumbgen.core.images import GeneratedImage, parse_reference_image


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ImagePayload(_WireModel):
    """An image as it travels over the wire.

    Attributes:
        data: Base64-encoded image bytes.
        media_type: MIME type, e.g. ``"image/png"``.
    """

    data: str = Field(..., description="Base64-encoded image bytes.")
    media_type: str = Field(
        ...,
        alias="mediaType",
        description="MIME type of the image (e.g. 'image/png').",
    )

    def to_image(self) -> GeneratedImage:
        """Decode into a :class:`GeneratedImage`.

        Raises:
            ValueError: If ``data`` is not valid base64 or the media type is
                not an ``image/*`` type.
        """
        image = GeneratedImage.from_wire({"data": self.data, "mediaType": self.media_type})
        if not image.is_image:
            raise ValueError(f"Unsupported media type: {self.media_type or 'missing'}")
        return image


def _decode_one(value: Any) -> GeneratedImage:
    if isinstance(value, ImagePayload):
        return value.to_image()
    if isinstance(value, str):
        return parse_reference_image(value)
    if isinstance(value, dict):
        try:
            payload = ImagePayload.model_validate(value)
        except ValidationError as e:
            raise ValueError("expected {data, mediaType} with string values") from e
        return payload.to_image()
    raise ValueError(f"expected a string or an object, got {type(value).__name__}")


def decode_images(values: Any) -> list[GeneratedImage]:
    """Decode a list of uploaded images, preserving order.

    Strings are treated as ``data:`` URLs or bare base64 (media type is
    sniffed); ``{data, mediaType}`` objects carry their own media type.

    Raises:
        ValueError: If *values* is not a list, or naming the 1-based
            position of the first invalid image.
    """
    if values is None:
        return []
    if not isinstance(values, list):
        raise ValueError("images must be a list")
    images: list[GeneratedImage] = []
    for position, value in enumerate(values, start=1):
        try:
            images.append(_decode_one(value))
        except ValueError as e:
            raise ValueError(f"Image {position} is invalid: {e}") from e
    return images


class GenerateRequest(_WireModel):
    """Request body for the ``POST /generate`` endpoint.

    Attributes:
        prompt: Scene description typed by the user.
        images: Reference images, flattened from every upload bucket
            (extra, inspiration, person) in that order.
        count: Number of thumbnails.  Clamped into 1–4; anything
            non-numeric counts as 1.
        aspect_ratio: ``"16:9"``, ``"9:16"`` or ``"1:1"``.  Unknown values
            fall back to ``"16:9"``.
        mode: Optional override of the server's batch mode.
    """

    prompt: str = Field(
        default="",
        description="Scene description for the thumbnail.",
    )
    images: list[str | ImagePayload] = Field(
        default_factory=list,
        description="Reference images (data URLs, base64 strings or {data, mediaType}).",
    )
    # Any JSON value; clamp_count() turns whatever is not a number into 1.
    count: Any = Field(
        default=1,
        description="Number of thumbnails to generate (clamped to 1–4).",
    )
    aspect_ratio: str | None = Field(
        default="16:9",
        alias="aspectRatio",
        description="Aspect ratio: '16:9', '9:16' or '1:1'.",
    )
    mode: BatchMode | None = Field(
        default=None,
        description="Batch mode override: 'sequential' or 'parallel'.",
    )


class AnalyzeRequest(_WireModel):
    """Request body for the ``POST /analyze`` endpoint.

    Every field accepts any JSON value.  The handler checks ``mode`` first,
    so an unknown mode is answered with a 400 ``Invalid mode`` error whatever
    the rest of the body holds; ``images`` and ``prompt`` are checked after.

    Attributes:
        mode: ``"titles"`` or ``"ctr"``.
        images: One image (titles) or two images (ctr), in order.
        prompt: Optional video context for title suggestions.
    """

    mode: Any = Field(
        default=None,
        description="Analysis mode: 'titles' or 'ctr'.",
    )
    images: Any = Field(
        default_factory=list,
        description="Images to analyse (data URLs, base64 strings or {data, mediaType}).",
    )
    prompt: Any = Field(
        default=None,
        description="Video context used by the titles mode.",
    )


class RegenerateRequest(_WireModel):
    """Request body for the ``POST /api/regenerate`` endpoint.

    Attributes:
        prompt: Prompt of the original generation (may be empty).
        images: Reference images of the original generation.
        aspect_ratio: Aspect ratio of the original generation.
        index: Zero-based position of the thumbnail to replace.
        current_images: The result set currently displayed.
        history_id: Id of the history entry the result set came from.
    """

    prompt: str = Field(default="")
    images: list[str | ImagePayload] = Field(default_factory=list)
    aspect_ratio: str | None = Field(default="16:9", alias="aspectRatio")
    index: int = Field(..., ge=0, description="Position of the image to replace.")
    current_images: list[ImagePayload] = Field(
        ...,
        alias="currentImages",
        min_length=1,
        description="The displayed result set.",
    )
    history_id: str | None = Field(
        default=None,
        alias="historyId",
        description="Originating history entry; patched on success.",
    )
