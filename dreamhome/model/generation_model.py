"""
Pydantic models for image generation runs.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime, timezone
from enum import Enum
import uuid
from dreamhome.config import settings


MIN_SHOTS = 1
MAX_SHOTS = 5


class GenerationStatus(str, Enum):
    IDLE = "idle"
    PLANNING_PROMPTS = "planning_prompts"
    GENERATING_IMAGES = "generating_images"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ImageStatus(str, Enum):
    PENDING = "pending"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class ItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class RunMode(str, Enum):
    SINGLE = "single"
    BATCH = "batch"


class AspectRatio(str, Enum):
    """Aspect ratios accepted by the image backends."""
    SQUARE = "1:1"
    PORTRAIT_9_16 = "9:16"
    LANDSCAPE_16_9 = "16:9"
    PORTRAIT_3_4 = "3:4"
    LANDSCAPE_4_3 = "4:3"
    LANDSCAPE_3_2 = "3:2"
    PORTRAIT_2_3 = "2:3"
    LANDSCAPE_5_4 = "5:4"
    PORTRAIT_4_5 = "4:5"
    ULTRAWIDE_21_9 = "21:9"
    AUTO = "auto"


TERMINAL_IMAGE_STATUSES = (ImageStatus.SUCCESS, ImageStatus.ERROR)
TERMINAL_ITEM_STATUSES = (ItemStatus.COMPLETED, ItemStatus.ERROR)
TERMINAL_RUN_STATUSES = (GenerationStatus.COMPLETED, GenerationStatus.FAILED, GenerationStatus.CANCELLED)


def clamp_shot_count(count: int) -> int:
    """Clamp a requested shot count into the supported 1..5 range."""
    return max(MIN_SHOTS, min(MAX_SHOTS, count))


class ImagePlan(BaseModel):
    """One planned shot: a short Russian label and an English render prompt."""
    model_config = ConfigDict(frozen=True)

    label: str
    prompt: str


class RenderedImage(BaseModel):
    """Raw output of a single render call."""
    data: bytes
    mime_type: str = "image/png"


class GeneratedImage(BaseModel):
    """A single shot and its render state. Owned by one item pipeline."""
    id: str
    label: str
    prompt: str
    image_data: Optional[bytes] = None
    mime_type: Optional[str] = None
    status: ImageStatus = ImageStatus.PENDING
    error: Optional[str] = None


class BatchItem(BaseModel):
    """One input record (a CSV row, or the single-mode description)."""
    id: str
    external_id: Optional[str] = None
    original_description: str
    status: ItemStatus = ItemStatus.PENDING
    images: List[GeneratedImage] = Field(default_factory=list)
    error: Optional[str] = None

    def find_image(self, image_id: str) -> Optional[GeneratedImage]:
        return next((img for img in self.images if img.id == image_id), None)


class ProgressEvent(BaseModel):
    """A single state change published by a run."""
    run_id: str
    item_id: Optional[str] = None
    image_id: Optional[str] = None
    status: str
    overall_progress: int = 0
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# --- API models ---

class GenerateRequest(BaseModel):
    """Request model for single-property generation."""
    description: str = Field(..., min_length=1, description="Property description (Russian)")
    shot_count: int = Field(default=settings.DEFAULT_SHOT_COUNT, ge=MIN_SHOTS, le=MAX_SHOTS, description="Number of shots (1-5)")
    aspect_ratio: AspectRatio = AspectRatio(settings.DEFAULT_ASPECT_RATIO)


class ImageResponse(BaseModel):
    """Image state as exposed over the API (bytes served separately)."""
    id: str
    label: str
    prompt: str
    status: ImageStatus
    mime_type: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None


class ItemResponse(BaseModel):
    id: str
    external_id: Optional[str] = None
    original_description: str
    status: ItemStatus
    images: List[ImageResponse] = []
    success_count: int = 0
    error: Optional[str] = None


class RunResponse(BaseModel):
    """Snapshot of a run."""
    run_id: str
    mode: RunMode
    status: GenerationStatus
    overall_progress: int
    shot_count: int
    aspect_ratio: AspectRatio
    items: List[ItemResponse] = []
    error: Optional[str] = None
    created_at: datetime


class CsvPreviewResponse(BaseModel):
    """Response model for CSV preview."""
    headers: List[str]
    total_rows: int
    preview: List[dict] = []


def new_run_id() -> str:
    return uuid.uuid4().hex
