"""Retry-with-backoff tests for RateLimitedRenderer.

Covers the two configured policies:
- Single mode: 3 attempts, waits 5s then 10s
- Batch mode: 4 attempts, waits 10s, 20s, 30s
- Non rate-limit failures are never retried
"""

import pytest

from dreamhome.model.generation_model import AspectRatio
from dreamhome.services.errors import RateLimited, RenderFailed, RunCancelled
from dreamhome.services.retry import (
    RateLimitedRenderer,
    RetryPolicy,
    batch_mode_policy,
    single_mode_policy,
)
from dreamhome.services.run_context import CancellationToken

from tests.conftest import FakeRenderer, RecordingSleep

PROMPT = "living room"


def rate_limited():
    return RateLimited("429 Too Many Requests")


def test_default_policies():
    """Default settings give the documented attempt counts and waits."""
    single = single_mode_policy()
    batch = batch_mode_policy()

    assert single.max_attempts == 3
    assert [single.delay_for(n) for n in (1, 2)] == [5, 10]
    assert batch.max_attempts == 4
    assert [batch.delay_for(n) for n in (1, 2, 3)] == [10, 20, 30]


def test_policy_rejects_zero_attempts():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0, backoff_seconds=5)


@pytest.mark.asyncio
async def test_single_mode_recovers_after_two_rate_limits():
    renderer = FakeRenderer(script={PROMPT: [rate_limited(), rate_limited()]})
    sleep = RecordingSleep()
    wrapper = RateLimitedRenderer(renderer, RetryPolicy(max_attempts=3, backoff_seconds=5), sleep)

    result = await wrapper.render_image(PROMPT, AspectRatio.LANDSCAPE_16_9)

    assert result.mime_type == "image/png"
    assert len(renderer.calls) == 3
    assert sleep.delays == [5, 10]


@pytest.mark.asyncio
async def test_single_mode_gives_up_after_three_rate_limits():
    renderer = FakeRenderer(script={PROMPT: [rate_limited(), rate_limited(), rate_limited()]})
    sleep = RecordingSleep()
    wrapper = RateLimitedRenderer(renderer, RetryPolicy(max_attempts=3, backoff_seconds=5), sleep)

    with pytest.raises(RateLimited):
        await wrapper.render_image(PROMPT, AspectRatio.LANDSCAPE_16_9)

    # No wait after the final attempt
    assert len(renderer.calls) == 3
    assert sleep.delays == [5, 10]


@pytest.mark.asyncio
async def test_batch_mode_recovers_on_fourth_attempt():
    renderer = FakeRenderer(script={PROMPT: [rate_limited(), rate_limited(), rate_limited()]})
    sleep = RecordingSleep()
    wrapper = RateLimitedRenderer(renderer, RetryPolicy(max_attempts=4, backoff_seconds=10), sleep)

    result = await wrapper.render_image(PROMPT, AspectRatio.SQUARE)

    assert result.data
    assert len(renderer.calls) == 4
    assert sleep.delays == [10, 20, 30]


@pytest.mark.asyncio
async def test_non_rate_limit_error_is_not_retried():
    renderer = FakeRenderer(script={PROMPT: [RenderFailed("500 Internal Server Error"), None]})
    sleep = RecordingSleep()
    wrapper = RateLimitedRenderer(renderer, RetryPolicy(max_attempts=4, backoff_seconds=10), sleep)

    with pytest.raises(RenderFailed):
        await wrapper.render_image(PROMPT, AspectRatio.SQUARE)

    assert len(renderer.calls) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_cancellation_between_attempts_stops_retrying():
    token = CancellationToken()
    renderer = FakeRenderer(script={PROMPT: [rate_limited(), rate_limited()]})
    sleep = RecordingSleep(on_sleep=lambda _: token.cancel())
    wrapper = RateLimitedRenderer(renderer, RetryPolicy(max_attempts=3, backoff_seconds=5), sleep)

    with pytest.raises(RunCancelled):
        await wrapper.render_image(PROMPT, AspectRatio.SQUARE, cancel_token=token)

    assert len(renderer.calls) == 1
    assert sleep.delays == [5]
