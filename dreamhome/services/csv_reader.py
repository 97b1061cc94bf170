"""
CSV input reader.
First row is the header; every following non-empty row is one record.
"""

import csv
import io
from typing import Dict, List, Optional
from loguru import logger
from pydantic import BaseModel
from dreamhome.model.generation_model import BatchItem


class CsvTable(BaseModel):
    headers: List[str]
    rows: List[Dict[str, str]]


def read_csv(content: bytes) -> CsvTable:
    """
    Parse uploaded CSV bytes.

    Raises:
        ValueError: Not UTF-8, no header row, or no data rows
    """
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ValueError("CSV file must be UTF-8 encoded") from e

    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise ValueError("CSV file has no header row")

    headers = [h for h in reader.fieldnames if h is not None]
    rows = []
    for row in reader:
        values = {key: (value or "") for key, value in row.items() if key is not None}
        if not any(v.strip() for v in values.values()):
            continue
        rows.append(values)

    if not rows:
        raise ValueError("CSV file contains no records")

    logger.info(f"Parsed CSV: {len(headers)} column(s), {len(rows)} row(s)")
    return CsvTable(headers=headers, rows=rows)


def select_records(
    table: CsvTable,
    description_column: str,
    id_column: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[BatchItem]:
    """
    Turn the first ``limit`` rows into batch items.

    ``limit`` is clamped to 1..len(rows); None processes every row.

    Raises:
        ValueError: Unknown description or id column
    """
    if description_column not in table.headers:
        raise ValueError(f"Unknown description column: {description_column}")
    if id_column and id_column not in table.headers:
        raise ValueError(f"Unknown id column: {id_column}")

    total = len(table.rows)
    count = total if limit is None else min(max(1, limit), total)

    items = []
    for idx, row in enumerate(table.rows[:count]):
        raw_id = row.get(id_column, "") if id_column else ""
        items.append(
            BatchItem(
                id=f"batch-{idx}",
                external_id=raw_id if raw_id.strip() else None,
                original_description=row.get(description_column, ""),
            )
        )
    return items
