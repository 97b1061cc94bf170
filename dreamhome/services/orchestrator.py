"""
Batch orchestrator: drives the item pipeline across a run's items.

Two concurrency policies:
- Parallel-settle (single description): every shot of the one item renders
  concurrently; the item completes once all of them settle.
- Sequential-throttled (CSV batch): items one at a time in input order, with
  a fixed delay between items to bound the request rate.
"""

import asyncio
from typing import List, Optional
from loguru import logger
from dreamhome.config import settings
from dreamhome.model.generation_model import (
    AspectRatio,
    BatchItem,
    GeneratedImage,
    GenerationStatus,
    ItemStatus,
    RunMode,
    TERMINAL_IMAGE_STATUSES,
    clamp_shot_count,
)
from dreamhome.services.errors import ImageBusy, RunCancelled
from dreamhome.services.pipeline import ItemPipeline, PromptPlanner
from dreamhome.services.renderer import ImageRenderer
from dreamhome.services.retry import batch_mode_policy, single_mode_policy
from dreamhome.services.run_context import (
    CANCELLED_MESSAGE,
    CancellationToken,
    RunContext,
    SleepFunc,
)


class BatchOrchestrator:
    """Owns ordering, concurrency and progress for generation runs."""

    _instance: Optional['BatchOrchestrator'] = None

    def __init__(
        self,
        planner: PromptPlanner,
        renderer: ImageRenderer,
        inter_record_delay: Optional[float] = None,
        inter_request_delay: Optional[float] = None,
    ):
        self.planner = planner
        self.renderer = renderer
        self.inter_record_delay = (
            settings.INTER_RECORD_DELAY_SECONDS if inter_record_delay is None else inter_record_delay
        )
        self.inter_request_delay = inter_request_delay

    # --- run construction ---

    def create_single_run(
        self,
        description: str,
        shot_count: int = 5,
        aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE_16_9,
        sleep: Optional[SleepFunc] = None,
    ) -> RunContext:
        item = BatchItem(id="single-0", original_description=description)
        return RunContext(
            mode=RunMode.SINGLE,
            items=[item],
            retry_policy=single_mode_policy(),
            shot_count=clamp_shot_count(shot_count),
            aspect_ratio=aspect_ratio,
            sleep=sleep,
        )

    def create_batch_run(
        self,
        items: List[BatchItem],
        shot_count: int = 5,
        aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE_16_9,
        sleep: Optional[SleepFunc] = None,
    ) -> RunContext:
        return RunContext(
            mode=RunMode.BATCH,
            items=items,
            retry_policy=batch_mode_policy(),
            shot_count=clamp_shot_count(shot_count),
            aspect_ratio=aspect_ratio,
            sleep=sleep,
        )

    def _pipeline(self, ctx: RunContext) -> ItemPipeline:
        return ItemPipeline(ctx, self.planner, self.renderer, inter_request_delay=self.inter_request_delay)

    async def run(self, ctx: RunContext):
        """Run ``ctx`` with the policy matching its mode."""
        try:
            if ctx.mode == RunMode.SINGLE:
                await self.run_single(ctx)
            else:
                await self.run_batch(ctx)
        except Exception as e:
            logger.exception(f"Run {ctx.run_id} failed unexpectedly")
            ctx.set_status(GenerationStatus.FAILED, error=f"Unexpected error: {e}")

    # --- policies ---

    async def run_single(self, ctx: RunContext):
        """Parallel-settle: plan once, render every shot concurrently."""
        item = ctx.items[0]
        pipeline = self._pipeline(ctx)
        ctx.set_status(GenerationStatus.PLANNING_PROMPTS)

        try:
            if not await pipeline.plan(item):
                self._finish_item(ctx, item)
                ctx.set_status(GenerationStatus.FAILED, error=item.error)
                return

            ctx.set_status(GenerationStatus.GENERATING_IMAGES)
            results = await asyncio.gather(
                *(pipeline.render_image(item, image) for image in item.images),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, RunCancelled):
                    raise result
                if isinstance(result, BaseException):
                    logger.opt(exception=result).error(f"Render task crashed in run {ctx.run_id}")

            pipeline.complete(item)
            self._finish_item(ctx, item)
            ctx.set_status(GenerationStatus.COMPLETED)

        except RunCancelled:
            self._cancel(ctx, pipeline)

    async def run_batch(self, ctx: RunContext):
        """Sequential-throttled: one item at a time, in input order."""
        pipeline = self._pipeline(ctx)
        total = len(ctx.items)
        ctx.set_status(GenerationStatus.GENERATING_IMAGES)

        try:
            for index, item in enumerate(ctx.items):
                ctx.cancel_token.raise_if_cancelled()
                logger.info(f"Run {ctx.run_id}: processing item {index + 1}/{total} ({item.external_id or item.id})")

                await pipeline.process(item)
                self._finish_item(ctx, item)

                if index < total - 1:
                    await ctx.sleep(self.inter_record_delay)

            ctx.set_status(GenerationStatus.COMPLETED)

        except RunCancelled:
            self._cancel(ctx, pipeline)

    # --- manual retry ---

    def start_retry(self, ctx: RunContext, image_id: str) -> asyncio.Task:
        """
        Re-run only the render step of one finished image in the background.

        Raises:
            KeyError: Unknown image id
            ImageBusy: Image is pending or already rendering
        """
        item, image = ctx.find_image(image_id)
        if ctx.is_rendering(image_id) or image.status not in TERMINAL_IMAGE_STATUSES:
            raise ImageBusy(f"Image {image_id} is not in a retryable state ({image.status.value})")

        if ctx.is_finished and ctx.cancel_token.cancelled:
            # The finished run's token is already set; retries get a fresh one
            ctx.cancel_token = CancellationToken()

        pipeline = self._pipeline(ctx)
        pipeline.claim(item, image)
        logger.info(f"Retrying image {image_id} in run {ctx.run_id}")

        task = asyncio.ensure_future(self._retry(pipeline, item, image))
        ctx.track(task)
        return task

    async def _retry(self, pipeline: ItemPipeline, item: BatchItem, image: GeneratedImage) -> bool:
        try:
            return await pipeline.render_claimed(item, image)
        except RunCancelled:
            return False

    # --- helpers ---

    def _finish_item(self, ctx: RunContext, item: BatchItem):
        progress = ctx.update_progress()
        ctx.publish(item=item, message=item.error)
        logger.info(f"Run {ctx.run_id}: item {item.id} -> {item.status.value}, progress {progress}%")

    def _cancel(self, ctx: RunContext, pipeline: ItemPipeline):
        for item in ctx.items:
            if item.status == ItemStatus.PROCESSING:
                pipeline.abort(item, CANCELLED_MESSAGE)
                self._finish_item(ctx, item)
        logger.warning(f"Run {ctx.run_id} cancelled")
        ctx.set_status(GenerationStatus.CANCELLED, error=CANCELLED_MESSAGE)

    def cancel(self, ctx: RunContext) -> bool:
        """Request cancellation. Returns False if the run already finished."""
        if ctx.is_finished:
            return False
        ctx.cancel_token.cancel()
        logger.info(f"Cancellation requested for run {ctx.run_id}")
        return True


def get_orchestrator() -> BatchOrchestrator:
    """Get the orchestrator singleton wired to the configured planner and renderer."""
    if BatchOrchestrator._instance is None:
        from dreamhome.llm.gemini_client import get_gemini_client
        from dreamhome.services.renderer import get_image_renderer

        BatchOrchestrator._instance = BatchOrchestrator(
            planner=get_gemini_client(),
            renderer=get_image_renderer(),
        )
    return BatchOrchestrator._instance
