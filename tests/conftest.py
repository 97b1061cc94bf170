"""pytest fixtures for DreamHome backend tests.

Provides:
- png_bytes: A tiny valid PNG
- FakePlanner / FakeRenderer: In-memory stand-ins for Gemini and the image API
- RecordingSleep: Records requested delays instead of sleeping
- orchestrator: BatchOrchestrator wired to the fakes with the default delays
"""

import asyncio
import io
from typing import Callable, Dict, List, Optional, Union

import pytest
from PIL import Image

from dreamhome.model.generation_model import AspectRatio, ImagePlan, RenderedImage
from dreamhome.services.errors import PlanningFailed
from dreamhome.services.orchestrator import BatchOrchestrator


def make_png() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=(200, 180, 160)).save(buffer, format="PNG")
    return buffer.getvalue()


PNG_BYTES = make_png()


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES


class RecordingSleep:
    """Async sleep replacement that records delays and yields control once."""

    def __init__(self, on_sleep: Optional[Callable[[float], None]] = None):
        self.delays: List[float] = []
        self.on_sleep = on_sleep

    async def __call__(self, seconds: float):
        self.delays.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(seconds)
        await asyncio.sleep(0)


class FakePlanner:
    """Returns ``count`` numbered plans; fails for descriptions in ``fail_for``."""

    def __init__(self, fail_for: Optional[List[str]] = None, on_call: Optional[Callable[[str], None]] = None):
        self.fail_for = set(fail_for or [])
        self.on_call = on_call
        self.calls: List[tuple] = []

    async def plan_prompts(self, description: str, count: int = 5) -> List[ImagePlan]:
        self.calls.append((description, count))
        if self.on_call is not None:
            self.on_call(description)
        await asyncio.sleep(0)
        if description in self.fail_for:
            raise PlanningFailed()
        return [
            ImagePlan(label=f"Shot {idx + 1}", prompt=f"{description} | shot {idx + 1}")
            for idx in range(count)
        ]


Outcome = Union[Exception, bytes, None]


class FakeRenderer:
    """
    Scripted renderer.

    ``script`` maps a prompt to a list of outcomes consumed one per call; an
    Exception outcome is raised, anything else is a success. Prompts without
    a script always succeed.
    """

    def __init__(self, script: Optional[Dict[str, List[Outcome]]] = None, yields: int = 3):
        self.script = {prompt: list(outcomes) for prompt, outcomes in (script or {}).items()}
        self.yields = yields
        self.calls: List[str] = []
        self.log: List[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.in_flight_by_prompt: Dict[str, int] = {}
        self.max_in_flight_by_prompt: Dict[str, int] = {}
        self.on_call: Optional[Callable[[str], None]] = None

    async def render_image(self, prompt: str, aspect_ratio: AspectRatio, cancel_token=None) -> RenderedImage:
        self.calls.append(prompt)
        self.log.append(("start", prompt))
        if self.on_call is not None:
            self.on_call(prompt)

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        current = self.in_flight_by_prompt.get(prompt, 0) + 1
        self.in_flight_by_prompt[prompt] = current
        self.max_in_flight_by_prompt[prompt] = max(self.max_in_flight_by_prompt.get(prompt, 0), current)

        try:
            for _ in range(self.yields):
                await asyncio.sleep(0)

            outcomes = self.script.get(prompt)
            outcome = outcomes.pop(0) if outcomes else None
            if isinstance(outcome, Exception):
                raise outcome
            return RenderedImage(data=outcome or PNG_BYTES, mime_type="image/png")
        finally:
            self.in_flight -= 1
            self.in_flight_by_prompt[prompt] -= 1
            self.log.append(("end", prompt))


@pytest.fixture
def planner() -> FakePlanner:
    return FakePlanner()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def orchestrator(planner, renderer) -> BatchOrchestrator:
    return BatchOrchestrator(planner=planner, renderer=renderer)
