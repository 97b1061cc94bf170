from fastapi.responses import JSONResponse, Response, StreamingResponse
from fastapi.encoders import jsonable_encoder
from typing import Any, AsyncIterator, Optional


def success_response(data: Any, status_code: int = 200) -> JSONResponse:
    # jsonable_encoder handles Pydantic models, enums and datetime objects
    return JSONResponse(
        content=jsonable_encoder({"result": data}),
        status_code=status_code
    )

def error_response(error: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(
        content={"error": error},
        status_code=status_code
    )

def binary_response(content: bytes, media_type: str, filename: Optional[str] = None) -> Response:
    """Raw bytes, served as an attachment when ``filename`` is given."""
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'} if filename else None
    return Response(content=content, media_type=media_type, headers=headers)

def event_stream_response(frames: AsyncIterator[bytes]) -> StreamingResponse:
    """Server-Sent Events stream; proxies must not buffer it."""
    return StreamingResponse(
        frames,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
