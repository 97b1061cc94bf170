"""
Image renderer interface and backend selection.
"""

from typing import TYPE_CHECKING, Optional, Protocol
from loguru import logger
from dreamhome.config import settings
from dreamhome.model.generation_model import AspectRatio, RenderedImage

if TYPE_CHECKING:
    from dreamhome.services.run_context import CancellationToken


class ImageRenderer(Protocol):
    """Performs exactly one render attempt and surfaces any error unchanged."""

    async def render_image(
        self,
        prompt: str,
        aspect_ratio: AspectRatio,
        cancel_token: Optional["CancellationToken"] = None,
    ) -> RenderedImage:
        ...


_renderer: Optional[ImageRenderer] = None


def get_image_renderer() -> ImageRenderer:
    """Get or create the configured renderer singleton."""
    global _renderer
    if _renderer is None:
        provider = settings.IMAGE_PROVIDER.lower()
        if provider == "openai":
            from dreamhome.llm.openai_client import get_openai_client
            _renderer = get_openai_client()
        elif provider == "nano_banana":
            from dreamhome.services.nano_banana_client import get_nano_banana_client
            _renderer = get_nano_banana_client()
        else:
            raise ValueError(f"Unknown IMAGE_PROVIDER: {settings.IMAGE_PROVIDER}")
        logger.info(f"Image renderer: {provider}")
    return _renderer
