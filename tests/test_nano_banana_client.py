"""Nano Banana client tests against an httpx MockTransport.

Covers the createTask -> recordInfo polling -> download flow and the
classification of upstream failures into render error kinds.
"""

import json

import httpx
import pytest

from dreamhome.config import settings
from dreamhome.model.generation_model import AspectRatio
from dreamhome.services.errors import RateLimited, RenderFailed, RenderTimeout, RunCancelled
from dreamhome.services.nano_banana_client import NanoBananaClient
from dreamhome.services.run_context import CancellationToken

BASE_URL = "https://api.test/api/v1/jobs"
IMAGE_URL = "https://cdn.test/result.png"


def envelope(data=None, code=200, msg="success"):
    return {"code": code, "msg": msg, "data": data}


class FakeKie:
    """Scripted kie.ai jobs API."""

    def __init__(self, png_bytes, records=None, create_response=None, download_status=200):
        self.png_bytes = png_bytes
        self.records = list(records or [])
        self.create_response = create_response
        self.download_status = download_status
        self.created = []
        self.polls = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/createTask"):
            self.created.append(json.loads(request.content))
            assert request.headers["Authorization"] == "Bearer test-key"
            if self.create_response is not None:
                return self.create_response
            return httpx.Response(200, json=envelope({"taskId": "task-1"}))

        if request.url.path.endswith("/recordInfo"):
            assert request.url.params["taskId"] == "task-1"
            self.polls += 1
            record = self.records.pop(0) if len(self.records) > 1 else self.records[0]
            return httpx.Response(200, json=envelope(record))

        if str(request.url) == IMAGE_URL:
            return httpx.Response(self.download_status, content=self.png_bytes)

        return httpx.Response(404)

    def client(self, max_polls=5):
        return NanoBananaClient(
            api_key="test-key",
            base_url=BASE_URL,
            poll_interval=0,
            max_polls=max_polls,
            transport=httpx.MockTransport(self.handler),
        )


def success_record():
    return {"state": "success", "resultJson": json.dumps({"resultUrls": [IMAGE_URL]})}


@pytest.mark.asyncio
async def test_render_image_polls_until_success(png_bytes):
    kie = FakeKie(png_bytes, records=[{"state": "waiting"}, {"state": "generating"}, success_record()])
    client = kie.client()

    result = await client.render_image("Cozy kitchen", AspectRatio.PORTRAIT_3_4)
    await client.close()

    assert result.data == png_bytes
    assert result.mime_type == "image/png"
    assert kie.polls == 3
    task_input = kie.created[0]["input"]
    assert task_input["prompt"] == f"Cozy kitchen{settings.PROMPT_SUFFIX}"
    assert task_input["image_size"] == "3:4"
    assert kie.created[0]["model"] == settings.NANO_BANANA_MODEL


@pytest.mark.asyncio
async def test_http_429_on_create_is_rate_limited(png_bytes):
    kie = FakeKie(png_bytes, create_response=httpx.Response(429, text="Too Many Requests"))
    client = kie.client()

    with pytest.raises(RateLimited):
        await client.render_image("Facade", AspectRatio.LANDSCAPE_16_9)
    await client.close()


@pytest.mark.asyncio
async def test_in_band_429_code_is_rate_limited(png_bytes):
    kie = FakeKie(png_bytes, create_response=httpx.Response(200, json=envelope(code=429, msg="rate limit exceeded")))
    client = kie.client()

    with pytest.raises(RateLimited):
        await client.render_image("Facade", AspectRatio.LANDSCAPE_16_9)
    await client.close()


@pytest.mark.asyncio
async def test_server_error_is_render_failed(png_bytes):
    kie = FakeKie(png_bytes, create_response=httpx.Response(500, text="Internal Server Error"))
    client = kie.client()

    with pytest.raises(RenderFailed) as exc_info:
        await client.render_image("Facade", AspectRatio.LANDSCAPE_16_9)
    await client.close()

    assert not isinstance(exc_info.value, RateLimited)
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_failed_task_is_render_failed(png_bytes):
    kie = FakeKie(png_bytes, records=[{"state": "fail", "failCode": "500", "failMsg": "content policy"}])
    client = kie.client()

    with pytest.raises(RenderFailed, match="content policy"):
        await client.render_image("Bedroom", AspectRatio.SQUARE)
    await client.close()


@pytest.mark.asyncio
async def test_failed_task_with_429_code_is_rate_limited(png_bytes):
    kie = FakeKie(png_bytes, records=[{"state": "fail", "failCode": "429", "failMsg": "busy"}])
    client = kie.client()

    with pytest.raises(RateLimited):
        await client.render_image("Bedroom", AspectRatio.SQUARE)
    await client.close()


@pytest.mark.asyncio
async def test_poll_budget_exhaustion_is_timeout(png_bytes):
    kie = FakeKie(png_bytes, records=[{"state": "generating"}])
    client = kie.client(max_polls=3)

    with pytest.raises(RenderTimeout):
        await client.render_image("Bathroom", AspectRatio.SQUARE)
    await client.close()

    assert kie.polls == 3


@pytest.mark.asyncio
async def test_missing_result_urls_is_render_failed(png_bytes):
    kie = FakeKie(png_bytes, records=[{"state": "success", "resultJson": json.dumps({"resultUrls": []})}])
    client = kie.client()

    with pytest.raises(RenderFailed, match="No image URLs"):
        await client.render_image("Bathroom", AspectRatio.SQUARE)
    await client.close()


@pytest.mark.asyncio
async def test_non_image_download_is_render_failed(png_bytes):
    kie = FakeKie(b"<html>not an image</html>", records=[success_record()])
    client = kie.client()

    with pytest.raises(RenderFailed):
        await client.render_image("Bathroom", AspectRatio.SQUARE)
    await client.close()


@pytest.mark.asyncio
async def test_cancelled_token_stops_polling(png_bytes):
    token = CancellationToken()
    token.cancel()
    kie = FakeKie(png_bytes, records=[{"state": "generating"}])
    client = kie.client()

    with pytest.raises(RunCancelled):
        await client.render_image("Bathroom", AspectRatio.SQUARE, cancel_token=token)
    await client.close()

    assert kie.polls == 0


def test_missing_api_key_is_rejected(monkeypatch):
    monkeypatch.setattr(settings, "NANO_BANANA_API_KEY", "")

    with pytest.raises(ValueError):
        NanoBananaClient(base_url=BASE_URL)


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [[1, 2, 3], "accepted", 42, {"code": 200, "data": ["task-1"]}])
async def test_non_object_envelope_is_render_failed(png_bytes, body):
    kie = FakeKie(png_bytes, create_response=httpx.Response(200, json=body))
    client = kie.client()

    with pytest.raises(RenderFailed):
        await client.render_image("Facade", AspectRatio.LANDSCAPE_16_9)
    await client.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "result_json",
    [json.dumps([IMAGE_URL]), json.dumps({"resultUrls": IMAGE_URL}), json.dumps({"resultUrls": [7]}), 12],
)
async def test_malformed_result_json_is_render_failed(png_bytes, result_json):
    kie = FakeKie(png_bytes, records=[{"state": "success", "resultJson": result_json}])
    client = kie.client()

    with pytest.raises(RenderFailed):
        await client.render_image("Bathroom", AspectRatio.SQUARE)
    await client.close()
