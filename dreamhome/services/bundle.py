"""
Result bundle builder.
Packs the successful images of a run into a ZIP archive, one folder per record.
"""

import io
import re
import zipfile
from typing import List, Optional, Set, Tuple
from loguru import logger
from dreamhome.model.generation_model import BatchItem, ImageStatus, ItemStatus
from dreamhome.services.errors import BundleFailed
from dreamhome.utils.images import extension_for

ROOT_FOLDER = "dreamhome_batch_results"
ARCHIVE_FILENAME = "dreamhome_results.zip"

_UNSAFE_ID_CHARS = re.compile(r"[^a-zа-яё0-9\-_]", re.IGNORECASE)
_UNSAFE_LABEL_CHARS = re.compile(r"[^a-zа-яё0-9]", re.IGNORECASE)


def sanitize_id(value: Optional[str]) -> str:
    """Replace characters outside [a-zа-я0-9-_] with underscores."""
    if value is None:
        return ""
    return _UNSAFE_ID_CHARS.sub("_", str(value))


def sanitize_label(label: str) -> str:
    return _UNSAFE_LABEL_CHARS.sub("_", label)


def folder_name(item: BatchItem, position: int) -> str:
    """Folder for the item at 1-based ``position``: sanitized external id or Lot_{n}."""
    return sanitize_id(item.external_id) or f"Lot_{position}"


def id_part(item: BatchItem, position: int) -> str:
    return sanitize_id(item.external_id) or str(position)


def unique_folder(item: BatchItem, position: int, used: Set[str]) -> Tuple[str, str]:
    """
    Folder and file prefix for an item, unique within one archive.

    Records sharing an id (or an id that sanitizes to another's, or to a
    Lot_{n} fallback) get their 1-based position appended: ``A-1_2``.
    Names are compared case-insensitively.
    """
    folder = folder_name(item, position)
    prefix = id_part(item, position)
    while folder.casefold() in used:
        folder = f"{folder}_{position}"
        prefix = f"{prefix}_{position}"
    used.add(folder.casefold())
    return folder, prefix


def _is_included(item: BatchItem) -> bool:
    return item.status == ItemStatus.COMPLETED or any(
        img.status == ImageStatus.SUCCESS for img in item.images
    )


def build_archive(items: List[BatchItem], root_folder: str = ROOT_FOLDER) -> bytes:
    """
    Build a ZIP archive of every successfully rendered image.

    Layout: ``{root}/{folder}/{idPart}_{shotIndex}_{label}.{ext}`` where
    shotIndex is the 1-based position of the image in its item's plan.
    Every included item gets its own folder, see ``unique_folder``.

    Raises:
        BundleFailed: No image has been rendered yet, or writing failed
    """
    buffer = io.BytesIO()
    file_count = 0
    used_folders: Set[str] = set()

    try:
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for position, item in enumerate(items, start=1):
                if not _is_included(item):
                    continue

                folder, prefix = unique_folder(item, position, used_folders)

                for shot_index, image in enumerate(item.images, start=1):
                    if image.status != ImageStatus.SUCCESS or not image.image_data:
                        continue
                    filename = f"{prefix}_{shot_index}_{sanitize_label(image.label)}.{extension_for(image.mime_type)}"
                    archive.writestr(f"{root_folder}/{folder}/{filename}", image.image_data)
                    file_count += 1
    except (OSError, zipfile.BadZipFile) as e:
        logger.error(f"Zip error: {e}")
        raise BundleFailed(f"Ошибка при создании архива: {e}") from e

    if file_count == 0:
        raise BundleFailed("Нет готовых изображений для архива")

    logger.info(f"Built archive with {file_count} image(s) from {len(items)} item(s)")
    return buffer.getvalue()
