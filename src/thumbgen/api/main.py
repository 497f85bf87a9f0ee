"""Thumbgen — FastAPI Application.

This module is the single entry point for the web service.  It defines the
FastAPI ``app`` instance, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
- **Thumbnail generation** is performed by
  :class:`~thumbgen.core.orchestrator.BatchOrchestrator`, which fans a
  request out into 1–4 Gemini calls.
- **Title suggestion and CTR comparison** go through
  :class:`~thumbgen.core.analysis.AnalysisDispatcher`.
- **History persistence** uses a single ``history.json`` file through
  :class:`~thumbgen.api.history_store.HistoryStore`; no database required.
- **Errors** are raised as :class:`~thumbgen.core.errors.ThumbgenError`
  subclasses and rendered by one exception handler as ``{"error": message}``
  with the matching status code.  Nothing escapes the HTTP boundary
  unclassified.

The collaborators live on ``app.state`` and are created in the lifespan
handler, so tests can substitute them without touching the network.

Endpoints
---------
========  ===================================  ==============================
Method    Path                                 Purpose
========  ===================================  ==============================
POST      ``/generate`` (``/api/generate``)    Generate a batch of thumbnails
POST      ``/analyze`` (``/api/analyze``)      Titles or CTR comparison
POST      ``/api/regenerate``                  Replace one thumbnail
GET       ``/api/history``                     List past generations
DELETE    ``/api/history``                     Clear the history
GET       ``/api/history/{id}``                One history entry
POST      ``/api/history/{id}/restore``        Entry as the current view
GET       ``/api/config``                      Aspect ratios and limits
GET       ``/api/progress-estimate``           Cosmetic progress value
GET       ``/health``                          Liveness probe
========  ===================================  ==============================

Usage
-----
CLI (installed entry point)::

    thumbgen

Direct invocation::

    python -m thumbgen.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from thumbgen import __version__
from thumbgen.api.history_store import HistoryStore, JsonFileStorage
from thumbgen.api.models import (
    AnalyzeRequest,
    GenerateRequest,
    RegenerateRequest,
    decode_images,
)
from thumbgen.api.state import restore_view
from thumbgen.core.analysis import ANALYSIS_MODES, AnalysisDispatcher, TitlesOutcome
from thumbgen.core.config import config
from thumbgen.core.errors import InvalidModeError, ThumbgenError
from thumbgen.core.gemini_client import GeminiClient
from thumbgen.core.images import GeneratedImage
from thumbgen.core.orchestrator import (
    BATCH_MODES,
    BatchOrchestrator,
    GenerationRequest,
    estimate_progress,
)
from thumbgen.core.prompt_builder import ASPECT_RATIO_PHRASES, DEFAULT_ASPECT_RATIO

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Application lifecycle.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the Gemini client, orchestrator, analysis dispatcher and history.

    The Gemini SDK client itself is created lazily on the first call, so the
    service starts (and serves history) even without an API key.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    client = GeminiClient(config)
    app.state.orchestrator = BatchOrchestrator.from_config(client, config)
    app.state.analyzer = AnalysisDispatcher(client, timeout=config.analysis_timeout_seconds)
    app.state.history = HistoryStore(JsonFileStorage(config.history_file), config.history_limit)
    logger.info(
        "Thumbgen ready (model=%s, batch_mode=%s, history=%s).",
        config.image_model_id,
        config.batch_mode,
        config.history_file,
    )

    yield


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Thumbgen",
    description="YouTube thumbnail generation and analysis on top of Google Gemini.",
    version=__version__,
    lifespan=lifespan,
)

# Allow cross-origin requests so the frontend can be served from a different
# port during development.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error rendering: every failure body is ``{"error": message}``.
# ---------------------------------------------------------------------------


@app.exception_handler(ThumbgenError)
async def thumbgen_error_handler(request: Request, exc: ThumbgenError) -> JSONResponse:
    logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(status_code=422, content={"error": message})


# ---------------------------------------------------------------------------
# Request helpers.
# ---------------------------------------------------------------------------


def _decode_or_400(values: Any) -> list[GeneratedImage]:
    """Decode uploaded images, turning shape and decode errors into HTTP 400."""
    if isinstance(values, list) and len(values) > config.max_reference_images:
        raise HTTPException(
            status_code=400,
            detail=f"At most {config.max_reference_images} images are allowed",
        )
    try:
        return decode_images(values)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


def _check_prompt(prompt: str, *, required: bool) -> str:
    prompt = prompt.strip()
    if required and not prompt:
        raise HTTPException(status_code=400, detail="prompt is required")
    if len(prompt) > config.max_prompt_length:
        raise HTTPException(
            status_code=400,
            detail=f"prompt must be at most {config.max_prompt_length} characters",
        )
    return prompt


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@app.post("/generate")
@app.post("/api/generate")
async def generate_thumbnails(req: GenerateRequest) -> dict:
    """Generate a batch of thumbnails.

    This endpoint:

    1. Validates the prompt and decodes the reference images.
    2. Clamps ``count`` into 1–4 and normalises the aspect ratio.
    3. Runs the batch under the configured (or requested) batch mode.
    4. Records the result in the history.

    Args:
        req: Validated :class:`GenerateRequest` payload.

    Returns:
        Dictionary with ``images`` (list of ``{data, mediaType}``) and
        ``historyId``.

    Raises:
        HTTPException: 400 for a missing or too long prompt, too many
            reference images, or undecodable images.
        ThumbgenError: Any classified generation failure (rendered by the
            exception handler).
    """
    prompt = _check_prompt(req.prompt, required=True)
    reference_images = _decode_or_400(req.images)

    request = GenerationRequest(
        prompt=prompt,
        reference_images=reference_images,
        count=req.count,
        aspect_ratio=req.aspect_ratio,
    )

    orchestrator: BatchOrchestrator = app.state.orchestrator
    images = await orchestrator.generate(request, mode=req.mode)

    history: HistoryStore = app.state.history
    history_id: str | None = None
    try:
        entry = history.append(prompt, images, request.aspect_ratio, request.count)
        history_id = entry.id
    except OSError:
        # History is best effort; the images are returned either way.
        logger.exception("Could not record generation in history.")

    return {
        "images": [img.to_wire() for img in images],
        "historyId": history_id,
    }


@app.post("/analyze")
@app.post("/api/analyze")
async def analyze_thumbnails(req: AnalyzeRequest) -> dict:
    """Suggest titles for one thumbnail or compare two for CTR.

    Args:
        req: Validated :class:`AnalyzeRequest` payload.

    Returns:
        ``{"titles": [...]}`` for the titles mode, or
        ``{"analysis": {"winner", "reasoning", "comparison"}}`` for ctr.

    Raises:
        InvalidModeError: 400 for an unknown mode, before anything else.
        HTTPException: 400 for undecodable images or a wrong image count.
    """
    # The mode is checked before the payload is even looked at.
    if req.mode not in ANALYSIS_MODES:
        raise InvalidModeError(req.mode)

    if req.prompt is not None and not isinstance(req.prompt, str):
        raise HTTPException(status_code=400, detail="prompt must be a string")
    images = _decode_or_400(req.images)
    analyzer: AnalysisDispatcher = app.state.analyzer
    try:
        outcome = await analyzer.analyze(req.mode, images, req.prompt)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    if isinstance(outcome, TitlesOutcome):
        return {"titles": outcome.titles}
    return {"analysis": outcome.model_dump()}


@app.post("/api/regenerate")
async def regenerate_thumbnail(req: RegenerateRequest) -> dict:
    """Regenerate the thumbnail at ``index`` without re-running the batch.

    On success the new image is spliced into a copy of ``currentImages``.
    When ``historyId`` names an existing history entry, that entry's image
    at the same position is patched too; no other entry is touched.

    Returns:
        Dictionary with the updated ``images``, the new ``image`` and
        ``historyPatched``.

    Raises:
        HTTPException: 400 for an out-of-range index or undecodable images.
        ThumbgenError: Any classified generation failure.
    """
    prompt = _check_prompt(req.prompt, required=False)
    reference_images = _decode_or_400(req.images)
    try:
        current_images = [payload.to_image() for payload in req.current_images]
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"currentImages: {e}") from e

    patched = False

    def patch_history(updated: list[GeneratedImage], image: GeneratedImage) -> None:
        nonlocal patched
        history: HistoryStore = app.state.history
        patched = history.patch_image(req.history_id, req.index, image)

    orchestrator: BatchOrchestrator = app.state.orchestrator
    try:
        updated, image = await orchestrator.regenerate(
            prompt,
            current_images,
            req.index,
            reference_images=reference_images,
            aspect_ratio=req.aspect_ratio,
            result_key=req.history_id,
            on_success=patch_history if req.history_id else None,
        )
    except IndexError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return {
        "images": [img.to_wire() for img in updated],
        "image": image.to_wire(),
        "historyPatched": patched,
    }


@app.get("/api/history")
async def list_history() -> dict:
    """Return every history entry, most recent first."""
    history: HistoryStore = app.state.history
    return {"entries": [entry.to_dict() for entry in history.list()]}


@app.delete("/api/history")
async def clear_history() -> dict:
    """Delete the whole history."""
    history: HistoryStore = app.state.history
    history.clear()
    return {"success": True}


@app.get("/api/history/{entry_id}")
async def get_history_entry(entry_id: str) -> dict:
    """Return one history entry.

    Raises:
        HTTPException: 404 if the entry is not found.
    """
    history: HistoryStore = app.state.history
    entry = history.get(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="History entry not found")
    return entry.to_dict()


@app.post("/api/history/{entry_id}/restore")
async def restore_history_entry(entry_id: str) -> dict:
    """Return a history entry as the current generation view.

    Prompt, images, aspect ratio and count are all taken from the entry.
    No model call is made.

    Raises:
        HTTPException: 404 if the entry is not found.
    """
    history: HistoryStore = app.state.history
    entry = history.get(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="History entry not found")
    return restore_view(entry).to_dict()


@app.get("/api/config")
async def get_config() -> dict:
    """Return the options and limits the frontend needs."""
    orchestrator: BatchOrchestrator = app.state.orchestrator
    return {
        "version": __version__,
        "aspect_ratios": list(ASPECT_RATIO_PHRASES),
        "default_aspect_ratio": DEFAULT_ASPECT_RATIO,
        "batch_mode": orchestrator.mode,
        "batch_modes": list(BATCH_MODES),
        "max_count": orchestrator.max_count,
        "sequential_delay_seconds": orchestrator.delay_seconds,
        "max_reference_images": config.max_reference_images,
        "max_prompt_length": config.max_prompt_length,
        "history_limit": config.history_limit,
        "analysis_modes": list(ANALYSIS_MODES),
        "image_model": config.image_model_id,
    }


@app.get("/api/progress-estimate")
async def progress_estimate(
    elapsed: float = Query(0.0, ge=0.0),
    count: int = Query(1),
) -> dict:
    """Cosmetic progress percentage for a batch running for ``elapsed`` seconds."""
    return {"progress": estimate_progress(elapsed, count)}


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "version": __version__}


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~thumbgen.core.config.config`
    (``THUMBGEN_SERVER_HOST``, ``THUMBGEN_SERVER_PORT``,
    ``THUMBGEN_LOG_LEVEL``).  Defaults to ``0.0.0.0:8000``.

    This function is registered as the ``thumbgen`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "thumbgen.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
