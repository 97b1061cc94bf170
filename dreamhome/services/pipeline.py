"""
Item pipeline: turns one record into its set of rendered shots.

Pending -> Processing (plan) -> Processing (images) -> Completed | Error.
Each image is owned by the pipeline that created it. Image failures never
abort sibling images; a planning failure ends the item with no images.
"""

from typing import List, Optional, Protocol
from loguru import logger
from dreamhome.config import settings
from dreamhome.model.generation_model import (
    BatchItem,
    GeneratedImage,
    ImagePlan,
    ImageStatus,
    ItemStatus,
    TERMINAL_IMAGE_STATUSES,
)
from dreamhome.services.errors import GenerationError, PlanningFailed, RunCancelled
from dreamhome.services.renderer import ImageRenderer
from dreamhome.services.retry import RateLimitedRenderer
from dreamhome.services.run_context import RunContext


class PromptPlanner(Protocol):
    async def plan_prompts(self, description: str, count: int = 5) -> List[ImagePlan]:
        ...


class ItemPipeline:
    """Plans and renders the shots of items belonging to one run."""

    def __init__(
        self,
        ctx: RunContext,
        planner: PromptPlanner,
        renderer: ImageRenderer,
        inter_request_delay: Optional[float] = None,
    ):
        self.ctx = ctx
        self.planner = planner
        self.renderer = RateLimitedRenderer(renderer, ctx.retry_policy, ctx.sleep)
        self.inter_request_delay = (
            settings.INTER_REQUEST_DELAY_SECONDS if inter_request_delay is None else inter_request_delay
        )

    async def plan(self, item: BatchItem) -> bool:
        """
        Plan the item's shots and materialise them as pending images.

        Returns:
            True if a plan was produced, False if planning failed (item -> ERROR)
        """
        item.status = ItemStatus.PROCESSING
        item.error = None
        item.images = []
        self.ctx.publish(item=item)

        try:
            plans = await self.planner.plan_prompts(item.original_description, self.ctx.shot_count)
        except PlanningFailed as e:
            logger.error(f"Planning failed for item {item.id}: {e}")
            item.status = ItemStatus.ERROR
            item.error = str(e)
            return False

        self.ctx.cancel_token.raise_if_cancelled()

        item.images = [
            GeneratedImage(
                id=f"{item.id}-img-{idx}",
                label=plan.label,
                prompt=plan.prompt,
            )
            for idx, plan in enumerate(plans)
        ]
        # Placeholders go out before any image renders
        for image in item.images:
            self.ctx.publish(item=item, image=image)
        return True

    def claim(self, item: BatchItem, image: GeneratedImage):
        """Mark the image as loading. Raises ImageBusy if already in flight."""
        self.ctx.begin_render(image)
        image.status = ImageStatus.LOADING
        image.error = None
        self.ctx.publish(item=item, image=image)

    async def render_claimed(self, item: BatchItem, image: GeneratedImage) -> bool:
        """Render an image previously claimed with ``claim``."""
        try:
            try:
                rendered = await self.renderer.render_image(
                    image.prompt,
                    self.ctx.aspect_ratio,
                    cancel_token=self.ctx.cancel_token,
                )
            except RunCancelled as e:
                self._fail(item, image, str(e))
                raise
            except GenerationError as e:
                logger.error(f"Failed to generate image {image.id}: {e}")
                self._fail(item, image, str(e))
                return False
            except Exception as e:
                logger.exception(f"Unexpected error generating image {image.id}")
                self._fail(item, image, f"Unexpected error: {e}")
                return False

            image.image_data = rendered.data
            image.mime_type = rendered.mime_type
            image.status = ImageStatus.SUCCESS
            self.ctx.publish(item=item, image=image)
            logger.info(f"Image {image.id} ({image.label}) generated")
            return True
        finally:
            self.ctx.end_render(image)

    async def render_image(self, item: BatchItem, image: GeneratedImage) -> bool:
        """Per-image step: loading -> success | error."""
        self.claim(item, image)
        return await self.render_claimed(item, image)

    async def render_sequential(self, item: BatchItem):
        """Render images strictly in plan order, throttling after each success."""
        for idx, image in enumerate(item.images):
            succeeded = await self.render_image(item, image)
            is_last = idx == len(item.images) - 1
            if succeeded and not is_last:
                await self.ctx.sleep(self.inter_request_delay)

    def complete(self, item: BatchItem):
        """Item is no longer being worked on; partial success still counts."""
        item.status = ItemStatus.COMPLETED
        success_count = sum(1 for img in item.images if img.status == ImageStatus.SUCCESS)
        logger.info(f"Item {item.id} completed: {success_count}/{len(item.images)} image(s)")

    async def process(self, item: BatchItem):
        """Plan, render sequentially and complete one item."""
        if not await self.plan(item):
            return
        await self.render_sequential(item)
        self.complete(item)

    def abort(self, item: BatchItem, message: str):
        """Stop an in-progress item, keeping images that already finished."""
        for image in item.images:
            if image.status not in TERMINAL_IMAGE_STATUSES:
                image.status = ImageStatus.ERROR
                image.error = message
                self.ctx.publish(item=item, image=image)
        item.status = ItemStatus.ERROR
        item.error = message

    def _fail(self, item: BatchItem, image: GeneratedImage, message: str):
        image.status = ImageStatus.ERROR
        image.image_data = None
        image.mime_type = None
        image.error = message
        self.ctx.publish(item=item, image=image)
