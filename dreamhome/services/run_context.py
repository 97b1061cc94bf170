"""
Run context and in-memory run registry.

A RunContext is created per generation run and passed explicitly through the
orchestrator and item pipeline. It owns the run's status, its items, the
cancellation token and the progress event log that API subscribers follow.
"""

import asyncio
import math
from collections import OrderedDict
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set, Tuple
from loguru import logger
from dreamhome.config import settings
from dreamhome.model.generation_model import (
    AspectRatio,
    BatchItem,
    GeneratedImage,
    GenerationStatus,
    ProgressEvent,
    RunMode,
    TERMINAL_ITEM_STATUSES,
    TERMINAL_RUN_STATUSES,
    new_run_id,
)
from dreamhome.services.errors import ImageBusy, RunCancelled
from dreamhome.services.retry import RetryPolicy


CANCELLED_MESSAGE = "Генерация отменена"

SleepFunc = Callable[[float], Awaitable[None]]


class CancellationToken:
    """Cooperative cancellation flag checked at every suspension point."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        self._event.set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise RunCancelled(CANCELLED_MESSAGE)

    async def sleep(self, seconds: float):
        """Sleep for ``seconds`` unless cancelled first."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()


class RunContext:
    """State of one generation run (single description or CSV batch)."""

    def __init__(
        self,
        mode: RunMode,
        items: List[BatchItem],
        retry_policy: RetryPolicy,
        shot_count: int = 5,
        aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE_16_9,
        sleep: Optional[SleepFunc] = None,
        run_id: Optional[str] = None,
    ):
        self.run_id = run_id or new_run_id()
        self.mode = mode
        self.items = items
        self.retry_policy = retry_policy
        self.shot_count = shot_count
        self.aspect_ratio = aspect_ratio
        self.status = GenerationStatus.IDLE
        self.overall_progress = 0
        self.error: Optional[str] = None
        self.created_at = datetime.now(timezone.utc)
        self.cancel_token = CancellationToken()
        self.task: Optional[asyncio.Task] = None
        self.background_tasks: Set[asyncio.Task] = set()

        self._sleep = sleep
        self._events: List[ProgressEvent] = []
        self._subscribers: List[asyncio.Queue] = []
        self._inflight: Set[str] = set()

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    @property
    def is_idle(self) -> bool:
        """Finished, with no manual retry still rendering."""
        return self.is_finished and not self.background_tasks

    def track(self, task: asyncio.Task):
        """Keep a retry task alive; live subscribers stay open until it ends."""
        self.background_tasks.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task):
        self.background_tasks.discard(task)
        if self.is_idle:
            self._close_subscribers()

    async def sleep(self, seconds: float):
        """Cancellable sleep used for backoff and throttle delays."""
        if self._sleep is None:
            await self.cancel_token.sleep(seconds)
            return
        self.cancel_token.raise_if_cancelled()
        await self._sleep(seconds)
        self.cancel_token.raise_if_cancelled()

    def find_image(self, image_id: str) -> Tuple[BatchItem, GeneratedImage]:
        """Locate an image and its owning item. Raises KeyError if unknown."""
        for item in self.items:
            image = item.find_image(image_id)
            if image is not None:
                return item, image
        raise KeyError(image_id)

    def find_item(self, item_id: str) -> BatchItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise KeyError(item_id)

    # --- in-flight tracking ---

    def begin_render(self, image: GeneratedImage):
        if image.id in self._inflight:
            raise ImageBusy(f"Image {image.id} is already being generated")
        self._inflight.add(image.id)

    def end_render(self, image: GeneratedImage):
        self._inflight.discard(image.id)

    def is_rendering(self, image_id: str) -> bool:
        return image_id in self._inflight

    # --- status and progress ---

    def set_status(self, status: GenerationStatus, error: Optional[str] = None):
        self.status = status
        if error is not None:
            self.error = error
        logger.info(f"Run {self.run_id}: status -> {status.value}")
        self.publish(status=status.value, message=error)
        if self.is_idle:
            self._close_subscribers()

    def update_progress(self) -> int:
        """Recompute progress from finished items. Never decreases."""
        total = len(self.items)
        if total == 0:
            return self.overall_progress
        finished = sum(1 for item in self.items if item.status in TERMINAL_ITEM_STATUSES)
        progress = math.floor(100 * finished / total + 0.5)
        self.overall_progress = max(self.overall_progress, progress)
        return self.overall_progress

    # --- events ---

    def publish(
        self,
        item: Optional[BatchItem] = None,
        image: Optional[GeneratedImage] = None,
        status: Optional[str] = None,
        message: Optional[str] = None,
    ) -> ProgressEvent:
        if status is None:
            if image is not None:
                status = image.status.value
            elif item is not None:
                status = item.status.value
            else:
                status = self.status.value

        event = ProgressEvent(
            run_id=self.run_id,
            item_id=item.id if item is not None else None,
            image_id=image.id if image is not None else None,
            status=status,
            overall_progress=self.overall_progress,
            message=message,
        )
        self._events.append(event)
        for queue in self._subscribers:
            queue.put_nowait(event)
        return event

    @property
    def history(self) -> List[ProgressEvent]:
        return list(self._events)

    def _close_subscribers(self):
        for queue in self._subscribers:
            queue.put_nowait(None)
        self._subscribers.clear()

    async def events(self) -> AsyncIterator[ProgressEvent]:
        """Replay past events, then follow live ones until the run and its retries finish."""
        history = list(self._events)
        queue: Optional[asyncio.Queue] = None
        if not self.is_idle:
            queue = asyncio.Queue()
            self._subscribers.append(queue)

        try:
            for event in history:
                yield event
            if queue is None:
                return
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            if queue is not None and queue in self._subscribers:
                self._subscribers.remove(queue)


class RunRegistry:
    """In-memory store of runs and their background tasks."""

    _instance: Optional['RunRegistry'] = None

    def __init__(self, max_runs: int = 20):
        self.max_runs = max_runs
        self._runs: "OrderedDict[str, RunContext]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._runs)

    def get(self, run_id: str) -> RunContext:
        """Return a run by id. Raises KeyError if unknown."""
        return self._runs[run_id]

    def add(self, ctx: RunContext) -> RunContext:
        self._runs[ctx.run_id] = ctx
        self._evict()
        return ctx

    def start(self, ctx: RunContext, coro: Awaitable) -> asyncio.Task:
        """Register a run and schedule its coroutine on the running loop."""
        self.add(ctx)
        task = asyncio.ensure_future(coro)
        ctx.task = task
        task.add_done_callback(lambda t: self._on_task_done(ctx, t))
        logger.info(f"Started {ctx.mode.value} run {ctx.run_id} with {len(ctx.items)} item(s)")
        return task

    def _on_task_done(self, ctx: RunContext, task: asyncio.Task):
        if task.cancelled():
            logger.warning(f"Run {ctx.run_id} task was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"Run {ctx.run_id} crashed: {exc}")

    def _evict(self):
        while len(self._runs) > self.max_runs:
            victim = next((run_id for run_id, run in self._runs.items() if run.is_finished), None)
            if victim is None:
                return
            logger.debug(f"Evicting finished run {victim}")
            del self._runs[victim]

    async def shutdown(self):
        """Cancel every unfinished run and manual retry, and wait for their tasks."""
        tasks = []
        for ctx in self._runs.values():
            if ctx.task is not None and not ctx.task.done():
                ctx.cancel_token.cancel()
                tasks.append(ctx.task)
            # Retries may be blocked inside a render call; the shared HTTP client closes next
            for task in list(ctx.background_tasks):
                if not task.done():
                    task.cancel()
                    tasks.append(task)
        if tasks:
            logger.info(f"Waiting for {len(tasks)} run(s) to stop")
            await asyncio.gather(*tasks, return_exceptions=True)


def get_run_registry() -> RunRegistry:
    """Get the run registry singleton."""
    if RunRegistry._instance is None:
        RunRegistry._instance = RunRegistry(max_runs=settings.MAX_RETAINED_RUNS)
    return RunRegistry._instance
