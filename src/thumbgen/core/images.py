"""Image payloads exchanged with Gemini.

:class:`GeneratedImage` is the one value type used for both directions:
images returned by the generation model and reference images uploaded by
the user.  The raw bytes are kept exactly as received so that an image
returned by one call and submitted as a reference to the next travels
byte-identical (no decode/re-encode through Pillow).

Pillow is only used to *sniff* the format of an uploaded reference image
when the caller did not send a ``data:`` URL with an explicit media type.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:(?P<media_type>[\w.+-]+/[\w.+-]+)?(?:;[^,]*)?;base64,", re.I)


@dataclass(frozen=True)
class GeneratedImage:
    """An immutable image payload.

    Attributes:
        data: Raw image bytes.
        media_type: MIME type, e.g. ``"image/png"``.
    """

    data: bytes
    media_type: str

    @property
    def is_image(self) -> bool:
        """Whether the media type is an ``image/*`` type."""
        return self.media_type.lower().startswith("image/")

    def to_base64(self) -> str:
        """Return the payload as a standard base64 string."""
        return base64.b64encode(self.data).decode("ascii")

    def to_wire(self) -> dict[str, str]:
        """Serialise to the ``{"data", "mediaType"}`` shape used on the wire."""
        return {"data": self.to_base64(), "mediaType": self.media_type}

    @classmethod
    def from_wire(cls, payload: dict) -> GeneratedImage:
        """Build an image from a ``{"data", "mediaType"}`` mapping.

        Raises:
            ValueError: If ``data`` is not valid base64.
        """
        media_type = payload.get("mediaType") or payload.get("media_type") or ""
        return cls(data=decode_base64(payload.get("data", "")), media_type=media_type)


def decode_base64(text: str) -> bytes:
    """Decode a base64 string, tolerating whitespace and missing padding.

    Raises:
        ValueError: If *text* is not valid base64.
    """
    cleaned = "".join(text.split())
    cleaned += "=" * (-len(cleaned) % 4)
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 image data: {e}") from e


def sniff_media_type(data: bytes) -> str | None:
    """Return the MIME type Pillow detects for *data*, or ``None``."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            image_format = img.format
    except (UnidentifiedImageError, OSError):
        return None
    if not image_format:
        return None
    return Image.MIME.get(image_format.upper())


def parse_reference_image(value: str) -> GeneratedImage:
    """Decode one uploaded reference image.

    Accepts either a ``data:<mime>;base64,<payload>`` URL (what a browser
    ``FileReader`` produces) or a bare base64 string.  The media type comes
    from the data URL when present, otherwise it is sniffed from the bytes.

    Args:
        value: The uploaded image string.

    Returns:
        The decoded image with its original bytes.

    Raises:
        ValueError: If the payload is not base64 or not a recognisable image.
    """
    media_type: str | None = None
    payload = value.strip()

    match = _DATA_URL_RE.match(payload)
    if match:
        media_type = match.group("media_type")
        payload = payload[match.end():]

    data = decode_base64(payload)
    if not data:
        raise ValueError("Empty image data")

    if not media_type:
        media_type = sniff_media_type(data)
        if media_type is None:
            raise ValueError("Unrecognised image format")
        logger.debug("Sniffed reference image type %s (%d bytes).", media_type, len(data))

    if not media_type.lower().startswith("image/"):
        raise ValueError(f"Unsupported media type: {media_type}")

    return GeneratedImage(data=data, media_type=media_type.lower())
