"""Shared pytest fixtures for Thumbgen tests."""

from __future__ import annotations

import asyncio
import io
import shutil
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Generator

import pytest
from PIL import Image

from thumbgen.api.history_store import HistoryStore, MemoryStorage
from thumbgen.core.analysis import AnalysisDispatcher
from thumbgen.core.config import ThumbgenConfig
from thumbgen.core.images import GeneratedImage
from thumbgen.core.orchestrator import BatchOrchestrator


def make_png(color: tuple[int, int, int] = (255, 0, 0), size: int = 8) -> bytes:
    """Encode a small solid-colour PNG.

    Args:
        color: RGB fill colour.  Different colours give different bytes.
        size: Width and height in pixels.

    Returns:
        PNG file bytes.
    """
    buffer = io.BytesIO()
    Image.new("RGB", (size, size), color=color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_image(color: tuple[int, int, int] = (255, 0, 0)) -> GeneratedImage:
    """A :class:`GeneratedImage` holding a small PNG."""
    return GeneratedImage(data=make_png(color), media_type="image/png")


class FakeGeminiClient:
    """Scripted stand-in for :class:`~thumbgen.core.gemini_client.GeminiClient`.

    Each generation call pops the next entry of ``outputs``: a list of
    images to return, or an exception to raise.  When the script is
    exhausted every call returns one red PNG.

    Attributes:
        calls: ``(prompt, reference_images)`` for every generation call.
        analysis_calls: ``(prompt, images)`` for every analysis call.
    """

    def __init__(self, outputs: Sequence | None = None, analysis_text: object = "") -> None:
        self.outputs = list(outputs or [])
        self.analysis_text = analysis_text
        self.calls: list[tuple[str, list[GeneratedImage]]] = []
        self.analysis_calls: list[tuple[str, list[GeneratedImage]]] = []

    async def generate_images(self, prompt, reference_images=()):
        self.calls.append((prompt, list(reference_images)))
        await asyncio.sleep(0)
        result = self.outputs.pop(0) if self.outputs else [make_image()]
        if isinstance(result, BaseException):
            raise result
        return list(result)

    async def analyze_images(self, prompt, images):
        self.analysis_calls.append((prompt, list(images)))
        if isinstance(self.analysis_text, BaseException):
            raise self.analysis_text
        return self.analysis_text


class RecordingSleep:
    """Async sleep replacement that only records the requested delays."""

    def __init__(self, events: list | None = None) -> None:
        self.delays: list[float] = []
        self.events = events

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.events is not None:
            self.events.append("sleep")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> ThumbgenConfig:
    """Create a test configuration with a temporary data directory.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        ThumbgenConfig instance for testing
    """
    return ThumbgenConfig(
        _env_file=None,
        gemini_api_key="test-key",
        data_dir=str(temp_dir / "data"),
        sequential_delay_seconds=0.0,
    )


@pytest.fixture
def fake_client() -> FakeGeminiClient:
    """Gemini stand-in returning one red PNG per call."""
    return FakeGeminiClient()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def history_store() -> HistoryStore:
    """History store backed by memory."""
    return HistoryStore(MemoryStorage())


@pytest.fixture
def test_client(fake_client, recording_sleep, history_store):
    """FastAPI TestClient wired to the fake Gemini client.

    The lifespan handler is not run (the client is not used as a context
    manager), so the collaborators set here are the ones the routes see.
    """
    from fastapi.testclient import TestClient

    from thumbgen.api.main import app

    app.state.orchestrator = BatchOrchestrator(
        fake_client,
        mode="sequential",
        delay_seconds=8.0,
        sleep=recording_sleep,
    )
    app.state.analyzer = AnalysisDispatcher(fake_client)
    app.state.history = history_store
    return TestClient(app)
