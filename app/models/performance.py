from sqlalchemy import Column, Integer, Float, Date, DateTime, ForeignKey, UniqueConstraint, JSON, func
from app.database import Base

class Score(Base):
    __tablename__ = "scores"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    score_value = Column(Float, nullable=False)  # 0–100
    # Point-in-time snapshot: five sub-scores + the normalized weights applied
    components = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_score_user_date"),
    )
