"""
Nano Banana (kie.ai) image generation client.
Submits a render job, polls it until it finishes and downloads the result.
Performs exactly one attempt per call; retry policy lives in the caller.
"""

import asyncio
import json
from typing import TYPE_CHECKING, Any, Dict, Optional
import httpx
from loguru import logger
from dreamhome.config import settings
from dreamhome.model.generation_model import AspectRatio, RenderedImage
from dreamhome.services.errors import (
    RateLimited,
    RenderFailed,
    RenderTimeout,
    classify_http_error,
    mentions_rate_limit,
)
from dreamhome.utils.images import detect_mime_type

if TYPE_CHECKING:
    from dreamhome.services.run_context import CancellationToken


SUCCESS_STATES = {"success"}
FAILED_STATES = {"failed", "fail", "error"}


class NanoBananaClient:
    """Async client for the kie.ai jobs API (createTask / recordInfo)."""

    _instance: Optional['NanoBananaClient'] = None

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        poll_interval: Optional[float] = None,
        max_polls: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client. Falls back to settings for every argument."""
        self.api_key = api_key if api_key is not None else settings.NANO_BANANA_API_KEY
        if not self.api_key:
            raise ValueError("NANO_BANANA_API_KEY not configured in settings")

        self.base_url = (base_url or settings.NANO_BANANA_BASE_URL).rstrip("/")
        self.model = settings.NANO_BANANA_MODEL
        self.output_format = settings.NANO_BANANA_OUTPUT_FORMAT
        self.poll_interval = settings.NANO_BANANA_POLL_INTERVAL if poll_interval is None else poll_interval
        self.max_polls = settings.NANO_BANANA_MAX_POLLS if max_polls is None else max_polls
        self._client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, transport=transport)
        logger.info(f"Nano Banana client initialized with model: {self.model}")

    @property
    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def _send(self, method: str, url: str, context: str, **kwargs) -> httpx.Response:
        """Send one request, mapping transport failures to render errors."""
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise RenderTimeout(f"{context}: request timed out ({e})") from e
        except httpx.HTTPError as e:
            raise RenderFailed(f"{context}: {e}") from e

    def _parse_envelope(self, response: httpx.Response, context: str) -> Dict[str, Any]:
        """Validate HTTP status and the in-band ``code`` field of the JSON envelope."""
        if not response.is_success:
            raise classify_http_error(response.status_code, response.text, context)

        try:
            body = response.json()
        except ValueError as e:
            raise RenderFailed(f"{context}: invalid JSON response") from e

        if not isinstance(body, dict):
            raise RenderFailed(f"{context}: unexpected response body: {str(body)[:200]}")

        code = body.get("code")
        if code != 200:
            raise classify_http_error(code if isinstance(code, int) else 0, body.get("msg"), context)

        return body

    @staticmethod
    def _data(body: Dict[str, Any], context: str) -> Dict[str, Any]:
        data = body.get("data") or {}
        if not isinstance(data, dict):
            raise RenderFailed(f"{context}: unexpected data field: {str(data)[:200]}")
        return data

    async def _create_task(self, prompt: str, aspect_ratio: AspectRatio) -> str:
        """Create an image generation task and return its id."""
        payload = {
            "model": self.model,
            "callBackUrl": None,
            "input": {
                "prompt": prompt,
                "output_format": self.output_format,
                "image_size": aspect_ratio.value,
            },
        }
        response = await self._send(
            "POST",
            f"{self.base_url}/createTask",
            "Failed to create task",
            json=payload,
            headers=self._auth_headers,
        )
        body = self._parse_envelope(response, "Failed to create task")

        task_id = self._data(body, "Failed to create task").get("taskId")
        if not task_id:
            raise RenderFailed(f"createTask returned no taskId: {body}")
        return task_id

    async def _query_task(self, task_id: str) -> Dict[str, Any]:
        response = await self._send(
            "GET",
            f"{self.base_url}/recordInfo",
            "Failed to query task",
            params={"taskId": task_id},
            headers=self._auth_headers,
        )
        body = self._parse_envelope(response, "Failed to query task")
        return self._data(body, "Failed to query task")

    async def _poll_task(self, task_id: str, cancel_token: Optional["CancellationToken"] = None) -> Dict[str, Any]:
        """Poll until the task succeeds, fails, or the poll budget runs out."""
        for _ in range(self.max_polls):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            record = await self._query_task(task_id)
            state = str(record.get("state") or "").lower()

            if state in SUCCESS_STATES:
                return record

            if state in FAILED_STATES:
                fail_code = str(record.get("failCode") or "")
                fail_msg = record.get("failMsg") or "Unknown error"
                if fail_code == "429" or mentions_rate_limit(fail_msg):
                    raise RateLimited(f"Task {task_id} rate limited: {fail_msg}")
                raise RenderFailed(f"Task failed: {fail_msg}")

            # Still waiting or generating
            if cancel_token is not None:
                await cancel_token.sleep(self.poll_interval)
            else:
                await asyncio.sleep(self.poll_interval)

        raise RenderTimeout(
            f"Task timeout: did not complete within {self.max_polls * self.poll_interval:g} seconds"
        )

    @staticmethod
    def _extract_result_url(record: Dict[str, Any]) -> str:
        try:
            result = json.loads(record.get("resultJson") or "{}")
        except (TypeError, ValueError) as e:
            raise RenderFailed("Task resultJson is not valid JSON") from e

        if not isinstance(result, dict):
            raise RenderFailed("Task resultJson is not an object")

        urls = result.get("resultUrls") or []
        if not isinstance(urls, list) or not urls:
            raise RenderFailed("No image URLs in result")
        if not isinstance(urls[0], str):
            raise RenderFailed(f"Invalid image URL in result: {urls[0]!r}")
        return urls[0]

    async def _download(self, url: str) -> bytes:
        response = await self._send("GET", url, "Failed to download image")
        if not response.is_success:
            raise classify_http_error(response.status_code, None, "Failed to download image")
        return response.content

    async def render_image(
        self,
        prompt: str,
        aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE_16_9,
        cancel_token: Optional["CancellationToken"] = None,
    ) -> RenderedImage:
        """
        Generate one image.

        Args:
            prompt: English render prompt (photorealism suffix is appended)
            aspect_ratio: Output aspect ratio
            cancel_token: Checked before every poll

        Returns:
            RenderedImage with the downloaded bytes and their MIME type

        Raises:
            RateLimited: Upstream throttled the request
            RenderTimeout: Job never finished within max_polls * poll_interval
            RenderFailed: Any other failure
        """
        enhanced_prompt = f"{prompt}{settings.PROMPT_SUFFIX}"

        task_id = await self._create_task(enhanced_prompt, aspect_ratio)
        logger.debug(f"Nano Banana task created: {task_id}")

        record = await self._poll_task(task_id, cancel_token)
        image_url = self._extract_result_url(record)

        data = await self._download(image_url)
        mime_type = detect_mime_type(data)
        logger.debug(f"Nano Banana task {task_id} done ({len(data)} bytes, {mime_type})")
        return RenderedImage(data=data, mime_type=mime_type)

    async def close(self):
        await self._client.aclose()


def get_nano_banana_client() -> NanoBananaClient:
    """Get Nano Banana client singleton."""
    if NanoBananaClient._instance is None:
        NanoBananaClient._instance = NanoBananaClient()
    return NanoBananaClient._instance
