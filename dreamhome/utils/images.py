import base64
import io
from typing import Optional
from PIL import Image, UnidentifiedImageError
from dreamhome.services.errors import RenderFailed

MIME_TYPES = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "GIF": "image/gif",
    "WEBP": "image/webp",
}

EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
}


def detect_mime_type(data: bytes) -> str:
    """Identify image bytes with Pillow. Raises RenderFailed if not an image."""
    if not data:
        raise RenderFailed("Empty image payload")
    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format
    except (UnidentifiedImageError, OSError) as e:
        raise RenderFailed(f"Downloaded payload is not an image: {e}") from e
    return MIME_TYPES.get(image_format or "", "image/png")


def extension_for(mime_type: Optional[str]) -> str:
    return EXTENSIONS.get(mime_type or "", "png")


def decode_base64_image(data: str) -> bytes:
    """Decode base64 image data, with or without a data URI prefix."""
    if "," in data:
        data = data.split(",")[1]
    return base64.standard_b64decode(data)
