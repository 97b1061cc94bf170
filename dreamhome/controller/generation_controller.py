"""
Generation Controller - single-property generation and batch CSV runs.
"""

from typing import Optional
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from loguru import logger
from dreamhome.config import settings
from dreamhome.utils.response import success_response, error_response
from dreamhome.model.generation_model import (
    AspectRatio,
    CsvPreviewResponse,
    GenerateRequest,
    MAX_SHOTS,
    MIN_SHOTS,
    RunResponse,
)
from dreamhome.controller.runs_controller import build_run_response
from dreamhome.services.csv_reader import read_csv, select_records
from dreamhome.services.orchestrator import BatchOrchestrator, get_orchestrator
from dreamhome.services.run_context import RunRegistry, get_run_registry

router = APIRouter()

PREVIEW_ROWS = 3


@router.post("/generate", response_model=RunResponse, status_code=202)
async def generate_single(
    request_body: GenerateRequest,
    request: Request,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
    registry: RunRegistry = Depends(get_run_registry),
):
    """
    Start generating images for one property description.

    Shots render concurrently. Follow progress via ``/runs/{run_id}/events``.
    """
    description = request_body.description.strip()
    if not description:
        return error_response("Description is required", 400)

    ctx = orchestrator.create_single_run(
        description,
        shot_count=request_body.shot_count,
        aspect_ratio=request_body.aspect_ratio,
    )
    registry.start(ctx, orchestrator.run(ctx))
    logger.info(f"Single run {ctx.run_id} started ({ctx.shot_count} shot(s))")

    return success_response(build_run_response(ctx, request).model_dump(), 202)


@router.post("/batch/preview", response_model=CsvPreviewResponse)
async def preview_csv(file: UploadFile = File(...)):
    """Return the headers, row count and first rows of an uploaded CSV."""
    if not file.filename or not file.filename.lower().endswith(".csv"):
        return error_response(f"Only CSV files are allowed. Got: {file.filename}", 400)

    try:
        content = await file.read()
        table = read_csv(content)
    except ValueError as e:
        logger.warning(f"CSV preview failed for {file.filename}: {e}")
        return error_response(str(e), 400)
    finally:
        await file.close()

    response = CsvPreviewResponse(
        headers=table.headers,
        total_rows=len(table.rows),
        preview=table.rows[:PREVIEW_ROWS],
    )
    return success_response(response.model_dump(), 200)


@router.post("/batch/start", response_model=RunResponse, status_code=202)
async def start_batch(
    request: Request,
    file: UploadFile = File(...),
    description_column: str = Form(...),
    id_column: Optional[str] = Form(None),
    limit: Optional[int] = Form(None),
    shot_count: int = Form(settings.DEFAULT_SHOT_COUNT),
    aspect_ratio: AspectRatio = Form(AspectRatio(settings.DEFAULT_ASPECT_RATIO)),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
    registry: RunRegistry = Depends(get_run_registry),
):
    """
    Start a sequential batch run over the rows of an uploaded CSV.

    Parameters:
    - description_column: Header of the column holding descriptions (required)
    - id_column: Header used for folder and file names (optional)
    - limit: Number of rows to process, clamped to 1..total rows
    - shot_count: Shots per record (1-5)
    """
    if not file.filename or not file.filename.lower().endswith(".csv"):
        return error_response(f"Only CSV files are allowed. Got: {file.filename}", 400)

    if not MIN_SHOTS <= shot_count <= MAX_SHOTS:
        return error_response(f"shot_count must be between {MIN_SHOTS} and {MAX_SHOTS}", 422)

    try:
        content = await file.read()
        table = read_csv(content)
        items = select_records(
            table,
            description_column=description_column,
            id_column=id_column or None,
            limit=limit,
        )
    except ValueError as e:
        logger.warning(f"Batch start rejected for {file.filename}: {e}")
        return error_response(str(e), 400)
    finally:
        await file.close()

    ctx = orchestrator.create_batch_run(items, shot_count=shot_count, aspect_ratio=aspect_ratio)
    registry.start(ctx, orchestrator.run(ctx))
    logger.info(f"Batch run {ctx.run_id} started: {len(items)} of {len(table.rows)} record(s)")

    return success_response(build_run_response(ctx, request).model_dump(), 202)
