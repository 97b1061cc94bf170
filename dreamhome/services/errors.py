"""
Error hierarchy for the generation pipeline.

Errors are classified once, at the adapter boundary (planner, renderers),
into a closed set of kinds. Everything downstream (retry wrapper, item
pipeline, orchestrator) dispatches on the exception type only.

- GenerationError: Base for all pipeline errors
- PlanningFailed: Upstream returned no usable plan (fatal for the item)
- RateLimited: Upstream throttled the request (retryable)
- RenderFailed: Any other render failure (terminal for the image)
- RenderTimeout: Render job never finished within its poll budget
- BundleFailed: Archive could not be produced
- RunCancelled: The run's cancellation token was triggered
- ImageBusy: A render for this image is already in flight
"""

from typing import Any, Optional


PLANNING_FAILED_MESSAGE = "Не удалось создать план визуализации. Попробуйте изменить описание."


class GenerationError(Exception):
    """Base exception for all generation pipeline errors."""

    pass


class PlanningFailed(GenerationError):
    """Prompt planning produced no usable plan."""

    def __init__(self, message: str = PLANNING_FAILED_MESSAGE):
        super().__init__(message)


class RateLimited(GenerationError):
    """Upstream signaled throttling (HTTP 429 or an in-band equivalent)."""

    def __init__(self, message: str, status_code: Optional[int] = 429):
        super().__init__(message)
        self.status_code = status_code


class RenderFailed(GenerationError):
    """Non rate-limit render failure: bad prompt, upstream 5xx, network error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RenderTimeout(RenderFailed):
    """Asynchronous render job did not reach a terminal state in time."""

    pass


class BundleFailed(GenerationError):
    """Result archive could not be built."""

    pass


class RunCancelled(GenerationError):
    """The run was cancelled by the user."""

    pass


class ImageBusy(GenerationError):
    """A render call for this image is already in flight."""

    pass


def mentions_rate_limit(text: str) -> bool:
    lowered = text.lower()
    return (
        "429" in lowered
        or "rate limit" in lowered
        or "too many requests" in lowered
        or "resource_exhausted" in lowered
    )


def classify_http_error(
    status_code: int,
    payload: Any = None,
    context: str = "Request failed",
) -> GenerationError:
    """Classify an upstream HTTP failure into a render error kind.

    Args:
        status_code: HTTP status code, or the in-band ``code`` field of a
            JSON envelope that reported failure with HTTP 200
        payload: Response body (text or decoded JSON) used for the message
            and for in-band rate-limit signals
        context: Short description of the failed step

    Returns:
        RateLimited for 429 or a payload that signals throttling,
        RenderFailed otherwise
    """
    detail = str(payload)[:500] if payload is not None else ""
    message = f"{context}: {status_code} {detail}".strip()

    if status_code == 429:
        return RateLimited(message, status_code=status_code)

    if detail and mentions_rate_limit(detail):
        return RateLimited(message, status_code=status_code)

    return RenderFailed(message, status_code=status_code)
