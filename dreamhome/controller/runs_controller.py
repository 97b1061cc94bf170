"""
Runs Controller - run status, progress stream, images, retry, cancel, archive.
"""

from typing import AsyncIterator
from fastapi import APIRouter, Depends, Request
from loguru import logger
from dreamhome.utils.response import (
    binary_response,
    error_response,
    event_stream_response,
    success_response,
)
from dreamhome.model.generation_model import (
    ImageResponse,
    ImageStatus,
    ItemResponse,
    RunResponse,
)
from dreamhome.services.bundle import ARCHIVE_FILENAME, build_archive
from dreamhome.services.errors import BundleFailed, ImageBusy
from dreamhome.services.orchestrator import BatchOrchestrator, get_orchestrator
from dreamhome.services.run_context import RunContext, RunRegistry, get_run_registry

router = APIRouter()


def build_run_response(ctx: RunContext, request: Request) -> RunResponse:
    """Snapshot a run. Image bytes are served from their own endpoint."""
    items = []
    for item in ctx.items:
        images = [
            ImageResponse(
                id=img.id,
                label=img.label,
                prompt=img.prompt,
                status=img.status,
                mime_type=img.mime_type,
                url=(
                    str(request.url_for("get_image", run_id=ctx.run_id, image_id=img.id))
                    if img.status == ImageStatus.SUCCESS
                    else None
                ),
                error=img.error,
            )
            for img in item.images
        ]
        items.append(
            ItemResponse(
                id=item.id,
                external_id=item.external_id,
                original_description=item.original_description,
                status=item.status,
                images=images,
                success_count=sum(1 for img in item.images if img.status == ImageStatus.SUCCESS),
                error=item.error,
            )
        )

    return RunResponse(
        run_id=ctx.run_id,
        mode=ctx.mode,
        status=ctx.status,
        overall_progress=ctx.overall_progress,
        shot_count=ctx.shot_count,
        aspect_ratio=ctx.aspect_ratio,
        items=items,
        error=ctx.error,
        created_at=ctx.created_at,
    )


async def _event_stream(ctx: RunContext) -> AsyncIterator[bytes]:
    stream = ctx.events()
    try:
        async for event in stream:
            yield f"data: {event.model_dump_json()}\n\n".encode("utf-8")
    finally:
        await stream.aclose()


@router.get("/{run_id}", response_model=RunResponse)
async def get_run(run_id: str, request: Request, registry: RunRegistry = Depends(get_run_registry)):
    """Get the current state of a run."""
    try:
        ctx = registry.get(run_id)
    except KeyError:
        return error_response("Run not found", 404)

    return success_response(build_run_response(ctx, request).model_dump(), 200)


@router.get("/{run_id}/events")
async def stream_run_events(run_id: str, registry: RunRegistry = Depends(get_run_registry)):
    """Stream progress events for ``run_id`` as Server-Sent Events."""
    try:
        ctx = registry.get(run_id)
    except KeyError:
        return error_response("Run not found", 404)

    return event_stream_response(_event_stream(ctx))


@router.get("/{run_id}/images/{image_id}", name="get_image")
async def get_image(run_id: str, image_id: str, registry: RunRegistry = Depends(get_run_registry)):
    """Serve the raw bytes of a generated image."""
    try:
        ctx = registry.get(run_id)
        _, image = ctx.find_image(image_id)
    except KeyError:
        return error_response("Image not found", 404)

    if image.status != ImageStatus.SUCCESS or not image.image_data:
        return error_response("Image is not ready", 404)

    return binary_response(image.image_data, image.mime_type or "image/png")


@router.post("/{run_id}/images/{image_id}/retry", status_code=202)
async def retry_image(
    run_id: str,
    image_id: str,
    registry: RunRegistry = Depends(get_run_registry),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    """Re-run the render step for one image (the plan is kept)."""
    try:
        ctx = registry.get(run_id)
        orchestrator.start_retry(ctx, image_id)
    except KeyError:
        return error_response("Image not found", 404)
    except ImageBusy as e:
        return error_response(str(e), 409)

    return success_response({"run_id": run_id, "image_id": image_id, "status": ImageStatus.LOADING.value}, 202)


@router.post("/{run_id}/cancel")
async def cancel_run(
    run_id: str,
    registry: RunRegistry = Depends(get_run_registry),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    """Request cancellation of a running run."""
    try:
        ctx = registry.get(run_id)
    except KeyError:
        return error_response("Run not found", 404)

    if not orchestrator.cancel(ctx):
        return error_response(f"Run already finished ({ctx.status.value})", 409)

    return success_response({"run_id": run_id, "message": "Cancellation requested"}, 202)


@router.get("/{run_id}/archive")
async def download_archive(run_id: str, registry: RunRegistry = Depends(get_run_registry)):
    """Download every generated image of the run as a ZIP archive."""
    try:
        ctx = registry.get(run_id)
    except KeyError:
        return error_response("Run not found", 404)

    try:
        content = build_archive(ctx.items)
    except BundleFailed as e:
        logger.warning(f"Archive for run {run_id} not built: {e}")
        return error_response(str(e), 409)

    return binary_response(content, "application/zip", filename=ARCHIVE_FILENAME)
