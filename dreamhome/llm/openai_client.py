"""
OpenAI API Client for image rendering.
Alternative renderer backend (IMAGE_PROVIDER=openai).
"""

import openai
from openai import AsyncOpenAI
from typing import TYPE_CHECKING, Optional
from loguru import logger
from dreamhome.config import settings
from dreamhome.model.generation_model import AspectRatio, RenderedImage
from dreamhome.services.errors import RateLimited, RenderFailed, RenderTimeout
from dreamhome.utils.images import decode_base64_image, detect_mime_type

if TYPE_CHECKING:
    from dreamhome.services.run_context import CancellationToken


# gpt-image models only accept three sizes; map every ratio to the closest one
LANDSCAPE_SIZE = "1536x1024"
PORTRAIT_SIZE = "1024x1536"
SQUARE_SIZE = "1024x1024"

SIZE_BY_RATIO = {
    AspectRatio.SQUARE: SQUARE_SIZE,
    AspectRatio.AUTO: SQUARE_SIZE,
    AspectRatio.LANDSCAPE_16_9: LANDSCAPE_SIZE,
    AspectRatio.LANDSCAPE_4_3: LANDSCAPE_SIZE,
    AspectRatio.LANDSCAPE_3_2: LANDSCAPE_SIZE,
    AspectRatio.LANDSCAPE_5_4: LANDSCAPE_SIZE,
    AspectRatio.ULTRAWIDE_21_9: LANDSCAPE_SIZE,
    AspectRatio.PORTRAIT_9_16: PORTRAIT_SIZE,
    AspectRatio.PORTRAIT_3_4: PORTRAIT_SIZE,
    AspectRatio.PORTRAIT_2_3: PORTRAIT_SIZE,
    AspectRatio.PORTRAIT_4_5: PORTRAIT_SIZE,
}


class OpenAIClient:
    """Wrapper for OpenAI image generation."""

    _instance: Optional['OpenAIClient'] = None

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        """Initialize OpenAI client with API key."""
        if client is None:
            if not settings.OPENAI_API_KEY:
                raise ValueError("OPENAI_API_KEY not configured in settings")
            client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY, max_retries=0)

        self.client = client
        self.model = settings.OPENAI_MODEL
        logger.info(f"OpenAI client initialized with model: {self.model}")

    async def render_image(
        self,
        prompt: str,
        aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE_16_9,
        cancel_token: Optional["CancellationToken"] = None,
    ) -> RenderedImage:
        """
        Generate one image with a single API call.

        Raises:
            RateLimited: 429 from OpenAI
            RenderTimeout: Request timed out
            RenderFailed: Any other API or payload error
        """
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        size = SIZE_BY_RATIO.get(aspect_ratio, LANDSCAPE_SIZE)

        try:
            response = await self.client.images.generate(
                model=self.model,
                prompt=f"{prompt}{settings.PROMPT_SUFFIX}",
                size=size,
                n=1,
            )
        except openai.RateLimitError as e:
            raise RateLimited(f"OpenAI rate limit: {e}", status_code=429) from e
        except openai.APITimeoutError as e:
            raise RenderTimeout(f"OpenAI request timed out: {e}") from e
        except openai.APIStatusError as e:
            raise RenderFailed(f"OpenAI API error: {e}", status_code=e.status_code) from e
        except openai.APIError as e:
            raise RenderFailed(f"OpenAI API error: {e}") from e

        if not response.data or not response.data[0].b64_json:
            raise RenderFailed("OpenAI returned no image data")

        image_bytes = decode_base64_image(response.data[0].b64_json)
        mime_type = detect_mime_type(image_bytes)
        logger.debug(f"OpenAI generated image ({len(image_bytes)} bytes, {size})")
        return RenderedImage(data=image_bytes, mime_type=mime_type)


def get_openai_client() -> OpenAIClient:
    """Get OpenAI client singleton."""
    if OpenAIClient._instance is None:
        OpenAIClient._instance = OpenAIClient()
    return OpenAIClient._instance
