"""Application state for the current generation view.

The frontend shows one "current" generation at a time: the prompt, the
thumbnails, the aspect ratio and the requested count.  :class:`GenerationView`
makes that state an explicit value instead of scattered UI variables, and
links it to the history entry it came from so that a single-image
regeneration can patch exactly that entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from thumbgen.api.history_store import HistoryEntry
from thumbgen.core.images import GeneratedImage

logger = logging.getLogger(__name__)


@dataclass
class GenerationView:
    """The generation currently on screen.

    Attributes:
        prompt: Prompt of the generation.
        images: Thumbnails in display order.
        aspect_ratio: Aspect ratio of the generation.
        count: Number of thumbnails requested.
        history_id: Id of the originating history entry, if any.
    """

    prompt: str = ""
    images: list[GeneratedImage] = field(default_factory=list)
    aspect_ratio: str = "16:9"
    count: int = 1
    history_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "prompt": self.prompt,
            "images": [img.to_wire() for img in self.images],
            "aspectRatio": self.aspect_ratio,
            "count": self.count,
            "historyId": self.history_id,
        }


def restore_view(entry: HistoryEntry) -> GenerationView:
    """Turn a history entry into the current view, without any network call.

    Prompt, images, aspect ratio and count are all taken from the entry.
    """
    logger.info("Restoring history entry %s.", entry.id)
    return GenerationView(
        prompt=entry.prompt,
        images=list(entry.images),
        aspect_ratio=entry.aspect_ratio,
        count=entry.count,
        history_id=entry.id,
    )
