from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from app.models.audit import AuditLog


def record_audit(db: AsyncSession, user_id: int, action: str, target, details: Optional[Dict[str, Any]] = None) -> AuditLog:
    """Stage an audit row in the caller's transaction."""
    log = AuditLog(user_id=user_id, action=action, target=str(target), details=details)
    db.add(log)
    return log
