"""Generation history storage for the Thumbgen API.

This module isolates history persistence from ``thumbgen.api.main`` so route
handlers can focus on HTTP concerns while the store remains testable as a
small unit.

The history is kept simple:

- every successful batch becomes one :class:`HistoryEntry`
- entries are kept newest first and capped at ``limit`` (20 by default);
  the oldest entries are dropped silently
- there is no per-entry delete, only a wholesale :meth:`HistoryStore.clear`
- the whole list is persisted as a single JSON array through a
  :class:`HistoryStorage` backend (a JSON file in production, memory in
  tests)

A missing or malformed history file reads as an empty history.  Parse
errors are logged and never fatal; individual entries that do not have the
expected shape are skipped.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from thumbgen.core.images import GeneratedImage
from thumbgen.core.prompt_builder import normalize_aspect_ratio

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 20


@dataclass
class HistoryEntry:
    """One past generation.

    Attributes:
        id: Unique identifier (UUID4 string).
        prompt: The user's prompt, as typed.
        images: The generated thumbnails, in result order.
        aspect_ratio: Aspect ratio the batch was generated with.
        count: Number of thumbnails requested.
        timestamp: Creation time in milliseconds since the epoch.
    """

    id: str
    prompt: str
    images: list[GeneratedImage] = field(default_factory=list)
    aspect_ratio: str = "16:9"
    count: int = 1
    timestamp: int = 0

    def to_dict(self) -> dict:
        """Serialise to the persisted / wire shape."""
        return {
            "id": self.id,
            "prompt": self.prompt,
            "images": [img.to_wire() for img in self.images],
            "aspectRatio": self.aspect_ratio,
            "count": self.count,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> HistoryEntry:
        """Rebuild an entry from its persisted shape.

        Raises:
            ValueError: If required fields are missing or malformed.
        """
        entry_id = raw.get("id")
        images = raw.get("images")
        if not isinstance(entry_id, str) or not entry_id:
            raise ValueError("entry has no id")
        if not isinstance(images, list):
            raise ValueError("entry has no image list")
        count = raw.get("count")
        return cls(
            id=entry_id,
            prompt=str(raw.get("prompt") or ""),
            images=[GeneratedImage.from_wire(img) for img in images],
            aspect_ratio=normalize_aspect_ratio(raw.get("aspectRatio")),
            count=count if isinstance(count, int) and count > 0 else max(len(images), 1),
            timestamp=int(raw.get("timestamp") or 0),
        )


class HistoryStorage(Protocol):
    """Persistence backend holding the raw JSON array."""

    def load(self) -> object: ...

    def save(self, entries: list[dict]) -> None: ...

    def delete(self) -> None: ...


class JsonFileStorage:
    """Stores the history as one JSON file.

    Args:
        path: Path to ``history.json``.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> object:
        """Return the parsed file content, or ``[]`` if missing or invalid."""
        if not self.path.exists():
            return []
        try:
            with open(self.path, encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, ValueError) as e:
            logger.warning("Could not read history file %s: %s", self.path, e)
            return []

    def save(self, entries: list[dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Write to a sibling temp file, then rename over the target.
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(entries, handle)
        tmp_path.replace(self.path)

    def delete(self) -> None:
        self.path.unlink(missing_ok=True)


class MemoryStorage:
    """In-memory backend, used by tests."""

    def __init__(self, initial: object = None) -> None:
        self.data: object = initial

    def load(self) -> object:
        return [] if self.data is None else self.data

    def save(self, entries: list[dict]) -> None:
        self.data = json.loads(json.dumps(entries))

    def delete(self) -> None:
        self.data = None


class HistoryStore:
    """Newest-first, capped list of past generations.

    Args:
        storage: Persistence backend.
        limit: Maximum number of entries kept.
        clock: Returns the current time in seconds (injectable for tests).
        id_factory: Returns a fresh unique id.
    """

    def __init__(
        self,
        storage: HistoryStorage,
        limit: int = DEFAULT_HISTORY_LIMIT,
        *,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._storage = storage
        self.limit = limit
        self._clock = clock
        self._id_factory = id_factory
        self._lock = threading.Lock()

    def list(self) -> list[HistoryEntry]:
        """Return all entries, most recent first."""
        with self._lock:
            return self._load()

    def get(self, entry_id: str) -> HistoryEntry | None:
        """Return the entry with *entry_id*, or ``None``."""
        return next((e for e in self.list() if e.id == entry_id), None)

    def append(
        self,
        prompt: str,
        images: Sequence[GeneratedImage],
        aspect_ratio: str,
        count: int,
    ) -> HistoryEntry:
        """Record a successful generation and persist the capped list.

        Returns:
            The newly created entry.
        """
        entry = HistoryEntry(
            id=self._id_factory(),
            prompt=prompt,
            images=list(images),
            aspect_ratio=normalize_aspect_ratio(aspect_ratio),
            count=count,
            timestamp=int(self._clock() * 1000),
        )
        with self._lock:
            entries = [entry, *self._load()][: self.limit]
            self._save(entries)
        logger.info("History entry %s added (%d kept).", entry.id, len(entries))
        return entry

    def clear(self) -> None:
        """Remove every entry and the persisted state."""
        with self._lock:
            self._storage.delete()
        logger.info("History cleared.")

    def patch_image(self, entry_id: str, index: int, image: GeneratedImage) -> bool:
        """Replace one image of the entry *entry_id* after a regeneration.

        Best effort: an unknown id or an out-of-range index leaves the
        history untouched.  Other entries are never modified.

        Returns:
            ``True`` if the entry was patched.
        """
        with self._lock:
            entries = self._load()
            entry = next((e for e in entries if e.id == entry_id), None)
            if entry is None or not 0 <= index < len(entry.images):
                logger.debug("No history slot %s[%d] to patch.", entry_id, index)
                return False
            entry.images[index] = image
            self._save(entries)
        return True

    # -- Internals ----------------------------------------------------------

    def _load(self) -> list[HistoryEntry]:
        raw = self._storage.load()
        if not isinstance(raw, list):
            logger.warning("History content is not a list; treating it as empty.")
            return []

        entries: list[HistoryEntry] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            try:
                entries.append(HistoryEntry.from_dict(item))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning("Skipping malformed history entry: %s", e)
        return entries[: self.limit]

    def _save(self, entries: list[HistoryEntry]) -> None:
        self._storage.save([e.to_dict() for e in entries])
