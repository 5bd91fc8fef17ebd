"""Deletes history older than the configured retention period."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.models.performance import Score
from app.models.report import ReportDelivery
from app.models.sync_log import SyncLog
from app.services.settings_store import get_data_retention

logger = logging.getLogger(__name__)


async def purge_expired_data(session_factory: Optional[async_sessionmaker] = None,
                             now: Optional[datetime] = None) -> Dict[str, int]:
    """Remove scores, sync logs and report deliveries past the retention period.

    Tasks, time logs, feedback and audit rows are kept.
    """
    if session_factory is None:
        from app.database import AsyncSessionLocal
        session_factory = AsyncSessionLocal
    now = now or datetime.now(timezone.utc)

    async with session_factory() as db:
        days = await get_data_retention(db)
        cutoff = now - timedelta(days=days)
        scores = await db.execute(delete(Score).where(Score.date < cutoff.date()))
        sync_logs = await db.execute(delete(SyncLog).where(SyncLog.started_at < cutoff))
        deliveries = await db.execute(delete(ReportDelivery).where(ReportDelivery.sent_at < cutoff))
        await db.commit()

    summary = {
        "retention_days": days,
        "scores": scores.rowcount,
        "sync_logs": sync_logs.rowcount,
        "report_deliveries": deliveries.rowcount,
    }
    logger.info("Purged data older than %d days: %s", days, summary)
    return summary
