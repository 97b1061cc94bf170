import time
from loguru import logger
from fastapi import Request

QUIET_PATHS = ("/health",)


async def log_requests_middleware(request: Request, call_next):
    """Log API requests with execution time. Health checks log at DEBUG."""

    start_time = time.perf_counter()
    response = await call_next(request)
    duration = (time.perf_counter() - start_time) * 1000

    # For event streams this is time-to-first-byte; the stream itself stays open
    kind = "stream" if response.headers.get("content-type", "").startswith("text/event-stream") else "API"
    level = "DEBUG" if request.url.path in QUIET_PATHS else "INFO"
    logger.log(
        level,
        f"{kind}: {request.method} {request.url.path} | Status: {response.status_code} | Time: {duration:.2f}ms",
    )

    return response
