"""Pulls projects and tasks from the external project-management API.

Expected payloads::

    GET /projects                 -> [{"id", "name", "description"?}, ...]
    GET /projects/{id}/tasks      -> [{"id", "name", "owners": [email|name, ...],
                                       "status", "priority", "estimated_hours",
                                       "start_date", "due_date", "completed_at",
                                       "percent_complete", "work_minutes",
                                       "created_by", "description"}, ...]

The client does not retry; failures propagate to the scheduler, which logs them.
Every run leaves a row in ``sync_logs``.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.models.sync_log import SyncLog
from app.services.ingest import (
    TaskRecord, UserCache, get_or_create_project, ingest_task_record, map_priority, map_status,
)
from app.services.spreadsheet_import import parse_date

logger = logging.getLogger(__name__)

SYNC_TYPE = "project_api"


def _optional_float(raw) -> Optional[float]:
    return None if raw is None else float(raw)


def task_record_from_payload(item: Dict) -> TaskRecord:
    return TaskRecord(
        external_id=str(item["id"]),
        title=item.get("name") or "Untitled task",
        description=item.get("description"),
        owners=item.get("owners") or [],
        created_by=item.get("created_by"),
        status=map_status(item.get("status")),
        priority=map_priority(item.get("priority")),
        estimated_hours=_optional_float(item.get("estimated_hours")),
        start_date=parse_date(item.get("start_date")),
        due_date=parse_date(item.get("due_date")),
        completed_at=parse_date(item.get("completed_at")),
        progress_percentage=int(item.get("percent_complete") or 0),
        work_minutes=int(item.get("work_minutes") or 0),
    )


class ProjectSyncClient:
    """Client for the project-management tool's REST API."""

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _get(self, client: httpx.AsyncClient, path: str) -> List[Dict]:
        response = await client.get(path)
        response.raise_for_status()
        return response.json()

    async def sync_all(self, db: AsyncSession) -> Dict[str, int]:
        """Upsert every project and task the API returns in a single transaction.

        A task payload that cannot be parsed, or has no owners, is skipped and
        noted in the sync log. Transport errors fail the whole run.
        """
        log = SyncLog(sync_type=SYNC_TYPE, status="running", items_processed=0)
        db.add(log)
        await db.commit()

        cache = UserCache()
        errors: List[Dict[str, str]] = []
        project_count, task_count = 0, 0

        try:
            async with self._client() as client:
                for item in await self._get(client, "/projects"):
                    project = await get_or_create_project(db, item["name"], external_id=str(item["id"]))
                    project_count += 1
                    for payload in await self._get(client, f"/projects/{item['id']}/tasks"):
                        task_id = payload.get("id") if isinstance(payload, dict) else None
                        try:
                            record = task_record_from_payload(payload)
                        except (KeyError, TypeError, ValueError, AttributeError) as e:
                            logger.warning("Skipping task %s in project %s: %s", task_id, item["id"], e)
                            errors.append({"message": f"Failed to sync task {task_id}", "details": str(e)})
                            continue
                        task = await ingest_task_record(db, project, record, cache)
                        if task is None:
                            errors.append({"message": f"Task {task_id} has no owner", "details": record.title})
                            continue
                        task_count += 1
        except Exception as e:
            await db.rollback()
            errors.append({"message": "Project sync failed", "details": str(e)})
            _finish_log(log, "failed", 0, errors)
            await db.commit()
            raise

        _finish_log(log, "partial_success" if errors else "success", project_count + task_count, errors)
        await db.commit()
        logger.info("Project sync finished: %d projects, %d tasks, %d skipped, %d users created",
                    project_count, task_count, len(errors), cache.created)
        return {"projects": project_count, "tasks": task_count, "skipped": len(errors), "users": cache.created}


def _finish_log(log: SyncLog, status: str, items_processed: int, errors: List[Dict[str, str]]) -> None:
    log.status = status
    log.items_processed = items_processed
    log.errors = errors or None
    log.completed_at = datetime.now(timezone.utc)


async def get_recent_sync_logs(db: AsyncSession, limit: int = 50) -> List[SyncLog]:
    result = await db.execute(
        select(SyncLog).order_by(SyncLog.started_at.desc(), SyncLog.id.desc()).limit(limit)
    )
    return result.scalars().all()


async def run_project_sync(session_factory: Optional[async_sessionmaker] = None) -> Optional[Dict[str, int]]:
    if not settings.PROJECT_API_BASE_URL:
        logger.info("PROJECT_API_BASE_URL not configured, skipping project sync")
        return None
    if session_factory is None:
        from app.database import AsyncSessionLocal
        session_factory = AsyncSessionLocal

    client = ProjectSyncClient(
        settings.PROJECT_API_BASE_URL,
        token=settings.PROJECT_API_TOKEN,
        timeout=settings.PROJECT_API_TIMEOUT_SECONDS,
    )
    async with session_factory() as db:
        return await client.sync_all(db)
