from sqlalchemy import Column, Integer, String, DateTime, JSON, func
from app.database import Base

class SyncLog(Base):
    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)
    sync_type = Column(String, nullable=False)  # project_api
    status = Column(String, nullable=False, default="running")  # running, success, partial_success, failed
    items_processed = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=True)  # [{"message", "details"}]
    started_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
