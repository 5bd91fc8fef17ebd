from typing import Any, Dict, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.config import settings
from app.models.setting import Setting

SCORING_WEIGHTS_KEY = "scoring_weights"

COMPONENT_NAMES = ("taskCompletion", "timeliness", "efficiency", "progressQuality", "priorityFocus")

DEFAULT_SCORING_WEIGHTS = {
    "taskCompletion": 30,
    "timeliness": 25,
    "efficiency": 25,
    "progressQuality": 15,
    "priorityFocus": 5,
}


async def get_setting(db: AsyncSession, key: str) -> Optional[Any]:
    result = await db.execute(select(Setting).where(Setting.key == key))
    setting = result.scalar_one_or_none()
    return setting.value if setting else None


async def set_setting(db: AsyncSession, key: str, value: Any) -> Setting:
    """Insert or replace a setting. The caller commits."""
    result = await db.execute(select(Setting).where(Setting.key == key))
    setting = result.scalar_one_or_none()
    if setting is None:
        setting = Setting(key=key, value=value)
        db.add(setting)
    else:
        setting.value = value
    await db.flush()
    return setting


async def get_scoring_weights(db: AsyncSession) -> Dict[str, int]:
    """Stored weights over the defaults; unknown keys in storage are ignored."""
    stored = await get_setting(db, SCORING_WEIGHTS_KEY) or {}
    weights = dict(DEFAULT_SCORING_WEIGHTS)
    for name in COMPONENT_NAMES:
        if stored.get(name) is not None:
            weights[name] = stored[name]
    return weights


def normalize_weights(weights: Dict[str, float]) -> Dict[str, float]:
    """Turn percentage weights into fractions that sum to 1.

    Divides by the actual total so legacy rows that do not add up to exactly 100
    still produce a proper weighting. A zero total falls back to the defaults.
    """
    total = sum(weights.get(name, 0) for name in COMPONENT_NAMES)
    if total <= 0:
        return normalize_weights(DEFAULT_SCORING_WEIGHTS)
    return {name: weights.get(name, 0) / total for name in COMPONENT_NAMES}


SYNC_INTERVAL_KEY = "sync_interval"  # {"minutes": int}
DATA_RETENTION_KEY = "data_retention"  # {"days": int}
DAILY_REPORT_TIME_KEY = "daily_email_time"  # {"hour", "minute"}
WEEKLY_REPORT_SCHEDULE_KEY = "weekly_email_schedule"  # {"day" 0=Sunday, "hour", "minute"}

DEFAULT_DAILY_REPORT_TIME = {"hour": 8, "minute": 0}
DEFAULT_WEEKLY_REPORT_SCHEDULE = {"day": 1, "hour": 8, "minute": 0}


async def get_sync_interval(db: AsyncSession) -> int:
    stored = await get_setting(db, SYNC_INTERVAL_KEY) or {}
    return int(stored.get("minutes") or settings.SYNC_INTERVAL_MINUTES)


async def get_data_retention(db: AsyncSession) -> int:
    stored = await get_setting(db, DATA_RETENTION_KEY) or {}
    return int(stored.get("days") or settings.DATA_RETENTION_DAYS)


async def _schedule(db: AsyncSession, key: str, defaults: Dict[str, int]) -> Dict[str, int]:
    stored = await get_setting(db, key) or {}
    return {name: int(stored.get(name, default)) for name, default in defaults.items()}


async def get_daily_report_time(db: AsyncSession) -> Dict[str, int]:
    return await _schedule(db, DAILY_REPORT_TIME_KEY, DEFAULT_DAILY_REPORT_TIME)


async def get_weekly_report_schedule(db: AsyncSession) -> Dict[str, int]:
    return await _schedule(db, WEEKLY_REPORT_SCHEDULE_KEY, DEFAULT_WEEKLY_REPORT_SCHEDULE)
