"""
Rate-limit aware retry wrapper around an image renderer.

Only RateLimited errors are retried. Every other failure propagates on the
first attempt. The wait before attempt ``n + 1`` is ``backoff_seconds * n``.
"""

from typing import TYPE_CHECKING, Awaitable, Callable, Optional
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from dreamhome.config import settings
from dreamhome.model.generation_model import AspectRatio, RenderedImage
from dreamhome.services.errors import RateLimited
from dreamhome.services.renderer import ImageRenderer

if TYPE_CHECKING:
    from dreamhome.services.run_context import CancellationToken


class RetryPolicy(BaseModel):
    """Bounded fixed-step backoff for rate-limit failures."""
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(..., ge=1)
    backoff_seconds: float = Field(..., ge=0)

    def delay_for(self, attempt: int) -> float:
        """Wait after failed attempt number ``attempt`` (1-based)."""
        return self.backoff_seconds * attempt


def single_mode_policy() -> RetryPolicy:
    """Interactive policy: fewer attempts, shorter waits (5s, 10s by default)."""
    return RetryPolicy(
        max_attempts=settings.SINGLE_MAX_ATTEMPTS,
        backoff_seconds=settings.SINGLE_BACKOFF_SECONDS,
    )


def batch_mode_policy() -> RetryPolicy:
    """Batch policy: tolerates longer waits (10s, 20s, 30s by default)."""
    return RetryPolicy(
        max_attempts=settings.BATCH_MAX_ATTEMPTS,
        backoff_seconds=settings.BATCH_BACKOFF_SECONDS,
    )


class RateLimitedRenderer:
    """Decorates an ImageRenderer with retry-with-backoff on RateLimited."""

    def __init__(
        self,
        renderer: ImageRenderer,
        policy: RetryPolicy,
        sleep: Callable[[float], Awaitable[None]],
    ):
        self.renderer = renderer
        self.policy = policy
        self.sleep = sleep

    async def render_image(
        self,
        prompt: str,
        aspect_ratio: AspectRatio,
        cancel_token: Optional["CancellationToken"] = None,
    ) -> RenderedImage:
        """
        Render one image, retrying rate-limit failures per the policy.

        Raises:
            RateLimited: Still throttled after the last attempt
            RenderFailed: Any non rate-limit failure, never retried
            RunCancelled: The run was cancelled between attempts
        """
        attempt = 1
        while True:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                return await self.renderer.render_image(prompt, aspect_ratio, cancel_token=cancel_token)
            except RateLimited as e:
                if attempt >= self.policy.max_attempts:
                    logger.error(f"Rate limit persisted after {attempt} attempt(s): {e}")
                    raise
                delay = self.policy.delay_for(attempt)
                logger.warning(f"Rate limit hit (attempt {attempt}/{self.policy.max_attempts}). Retrying in {delay:g}s...")
                await self.sleep(delay)
                attempt += 1
