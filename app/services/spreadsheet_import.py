import csv
import io
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Iterator, Optional
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.ingest import (
    HOURS_PER_DAY, TaskRecord, UserCache, get_or_create_project, ingest_task_record,
    map_priority, map_status,
)

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_NAME = "Imported Tasks"
DATE_FORMATS = ("%d-%m-%Y %I:%M %p", "%d-%m-%Y")
EXCEL_EPOCH = datetime(1899, 12, 30, tzinfo=timezone.utc)


def _text(raw) -> str:
    return "" if raw is None else str(raw).strip()


def _from_excel_serial(serial: float) -> datetime:
    # Stored to the nearest second
    try:
        return EXCEL_EPOCH + timedelta(seconds=round(serial * 86400))
    except (ValueError, OverflowError):
        raise ValueError(f"Unrecognized date: {serial!r}")


def parse_date(raw) -> Optional[datetime]:
    """Parse a spreadsheet or API date cell.

    Accepts datetimes, Excel serial day numbers (days since 1899-12-30, as
    numbers or numeric strings), ISO-8601 and ``DD-MM-YYYY HH:MM AM/PM``.
    Empty cells give None; anything else raises ValueError. Naive values are UTC.
    """
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ValueError(f"Unrecognized date: {raw!r}")
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, (int, float)):
        value = _from_excel_serial(float(raw))
    elif isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return None
        try:
            value = datetime.fromisoformat(raw)
        except ValueError:
            value = None
            for fmt in DATE_FORMATS:
                try:
                    value = datetime.strptime(raw, fmt)
                    break
                except ValueError:
                    continue
            if value is None:
                try:
                    serial = float(raw)
                except ValueError:
                    raise ValueError(f"Unrecognized date: {raw!r}")
                value = _from_excel_serial(serial)
    else:
        raise ValueError(f"Unrecognized date: {raw!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def parse_number(raw) -> Optional[float]:
    if isinstance(raw, bool):
        raise ValueError(f"Not a number: {raw!r}")
    if isinstance(raw, (int, float)):
        return float(raw)
    raw = _text(raw).rstrip("%")
    if not raw:
        return None
    return float(raw)


def row_to_record(row: Dict) -> TaskRecord:
    duration_days = parse_number(row.get("Duration"))
    work_hours = parse_number(row.get("Work hours"))
    progress = parse_number(row.get("% Completed"))
    return TaskRecord(
        title=_text(row.get("Task Name")) or "Untitled task",
        owners=_text(row.get("Owner")),
        created_by=_text(row.get("Created By")) or None,
        status=map_status(row.get("Custom Status")),
        priority=map_priority(row.get("Priority")),
        estimated_hours=duration_days * HOURS_PER_DAY if duration_days else None,
        start_date=parse_date(row.get("Start Date")),
        due_date=parse_date(row.get("Due Date")),
        completed_at=parse_date(row.get("Completion Date")),
        progress_percentage=int(progress or 0),
        work_minutes=round(work_hours * 60) if work_hours and work_hours > 0 else 0,
    )


def read_xlsx_rows(content: bytes) -> Iterator[Dict]:
    """Rows of the first worksheet as dicts keyed by the header row."""
    workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        rows = workbook.worksheets[0].iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            return
        columns = [_text(name) for name in header]
        for values in rows:
            if all(value is None for value in values):
                continue
            yield dict(zip(columns, values))
    finally:
        workbook.close()


async def import_task_rows(db: AsyncSession, rows: Iterable[Dict], project_name: str = DEFAULT_PROJECT_NAME) -> Dict[str, int]:
    """Import a task export (one row per task) into ``project_name``.

    Rows without a usable owner, or with unparseable numbers/dates, are skipped.
    Database errors propagate and nothing is committed.
    """
    project = await get_or_create_project(db, project_name)
    cache = UserCache()
    imported, skipped = 0, 0

    for line_no, row in enumerate(rows, start=2):
        try:
            record = row_to_record(row)
        except ValueError as e:
            logger.warning("Skipping row %d (%s): %s", line_no, row.get("Task Name"), e)
            skipped += 1
            continue

        task = await ingest_task_record(db, project, record, cache)
        if task is None:
            logger.warning("Skipping row %d (%s): no valid owners", line_no, record.title)
            skipped += 1
            continue
        imported += 1

    await db.commit()
    logger.info("Import into %r complete: %d imported, %d skipped, %d users created",
                project_name, imported, skipped, cache.created)
    return {"imported": imported, "skipped": skipped, "users": cache.created}


async def import_tasks_csv(db: AsyncSession, lines: Iterable[str], project_name: str = DEFAULT_PROJECT_NAME) -> Dict[str, int]:
    return await import_task_rows(db, csv.DictReader(lines), project_name)


async def import_tasks_xlsx(db: AsyncSession, content: bytes, project_name: str = DEFAULT_PROJECT_NAME) -> Dict[str, int]:
    try:
        rows = list(read_xlsx_rows(content))
    except (BadZipFile, InvalidFileException, KeyError) as e:
        raise ValueError(f"Not a readable .xlsx workbook: {e}") from e
    return await import_task_rows(db, rows, project_name)
