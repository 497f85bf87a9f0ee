"""Error taxonomy for upstream Gemini failures.

Every failure that can reach the HTTP boundary is represented by a
:class:`ThumbgenError` subclass carrying a user-facing message and the HTTP
status the API should answer with.  Raw exceptions raised by the
``google-genai`` client are mapped onto this taxonomy by
:func:`classify_upstream_error` using two message heuristics: a ``429``
status or the word ``quota`` signals a rate limit, and the substring
``API key`` signals a credential problem.

Classes
-------
ThumbgenError
    Base class.  ``message`` is safe to show to the user.
QuotaExceededError
    The Gemini per-minute quota was hit.
InvalidCredentialError
    The API key is missing or rejected.
MalformedAnalysisResponseError
    The analysis model answered with text that is not the expected JSON.
EmptyGenerationResultError
    A batch completed without error but produced no image.
InvalidModeError
    An analysis request named an unknown mode.
GenerationTimeoutError
    The request deadline expired before the batch finished.
UpstreamError
    Any other upstream failure.
"""

from __future__ import annotations

DEFAULT_GENERATION_MESSAGE = "Image generation failed"

QUOTA_MESSAGE = (
    "API quota exceeded. Wait a few seconds and try again, "
    "or reduce the number of thumbnails."
)
CREDENTIAL_MESSAGE = "Invalid API key. Check the THUMBGEN_GEMINI_API_KEY setting in your .env file."


class ThumbgenError(Exception):
    """Base class for errors that are reported to the API caller.

    Attributes:
        message: Human-readable message returned as ``{"error": message}``.
        status_code: HTTP status used by the API exception handler.
    """

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class QuotaExceededError(ThumbgenError):
    """Gemini rejected the call with a rate-limit or quota signal."""

    status_code = 429

    def __init__(self, message: str = QUOTA_MESSAGE) -> None:
        super().__init__(message)


class InvalidCredentialError(ThumbgenError):
    """The configured API key is missing or was rejected."""

    status_code = 500

    def __init__(self, message: str = CREDENTIAL_MESSAGE) -> None:
        super().__init__(message)


class MalformedAnalysisResponseError(ThumbgenError):
    """The analysis text could not be parsed into the expected shape.

    The user only ever sees the generic ``"Analysis failed"`` message; the
    parse detail is kept on :attr:`detail` for logging.
    """

    status_code = 502

    def __init__(self, detail: str = "", raw_text: str = "") -> None:
        super().__init__("Analysis failed")
        self.detail = detail
        self.raw_text = raw_text


class EmptyGenerationResultError(ThumbgenError):
    """The batch succeeded but no ``image/*`` output came back."""

    status_code = 502

    def __init__(self, message: str = "No image was produced. Try a different prompt.") -> None:
        super().__init__(message)


class InvalidModeError(ThumbgenError):
    """Analysis mode outside ``{"titles", "ctr"}``."""

    status_code = 400

    def __init__(self, mode: object = None) -> None:
        super().__init__("Invalid mode")
        self.mode = mode


class GenerationTimeoutError(ThumbgenError):
    """The overall request deadline expired."""

    status_code = 504

    def __init__(self, timeout: float | None = None) -> None:
        if timeout is None:
            message = "The request took too long. Try again with fewer thumbnails."
        else:
            message = (
                f"The request did not finish within {timeout:g} seconds. "
                "Try again with fewer thumbnails."
            )
        super().__init__(message)
        self.timeout = timeout


class UpstreamError(ThumbgenError):
    """Any other failure reported by the Gemini client."""

    status_code = 500


def _error_text(exc: BaseException) -> str:
    """Return the most informative text available on *exc*."""
    text = str(exc)
    # google-genai APIError keeps the server message separately from str().
    upstream_message = getattr(exc, "message", None)
    if isinstance(upstream_message, str) and upstream_message not in text:
        text = f"{text} {upstream_message}".strip()
    return text


def is_quota_error(exc: BaseException) -> bool:
    """Whether *exc* carries a rate-limit / quota signal."""
    if getattr(exc, "code", None) == 429 or getattr(exc, "status_code", None) == 429:
        return True
    text = _error_text(exc)
    return "429" in text or "quota" in text.lower()


def is_credential_error(exc: BaseException) -> bool:
    """Whether *exc* points at a missing or invalid API key."""
    return "API key" in _error_text(exc)


def classify_upstream_error(
    exc: BaseException,
    default_message: str = DEFAULT_GENERATION_MESSAGE,
) -> ThumbgenError:
    """Map a raw upstream exception onto the error taxonomy.

    Already-classified errors are returned unchanged.  Quota signals take
    precedence over credential signals.

    Args:
        exc: The exception raised by the Gemini client (or anything below it).
        default_message: Message used when *exc* carries no text at all.

    Returns:
        A :class:`ThumbgenError` instance suitable for raising.
    """
    if isinstance(exc, ThumbgenError):
        return exc
    if is_quota_error(exc):
        return QuotaExceededError()
    if is_credential_error(exc):
        return InvalidCredentialError()
    if isinstance(exc, Exception):
        message = str(exc).strip() or default_message
    else:
        message = default_message
    return UpstreamError(message)
