from sqlalchemy import Column, Integer, String, Text, Float, DateTime, ForeignKey, UniqueConstraint, func
from app.database import Base

class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String, unique=True, nullable=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    assignee_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)  # primary owner
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = Column(String, nullable=False, default="todo")  # todo, in_progress, on_hold, completed (legacy: Done)
    priority = Column(String, nullable=False, default="medium")  # low, medium, high
    estimated_hours = Column(Float, nullable=True)
    start_date = Column(DateTime(timezone=True), nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    progress_percentage = Column(Integer, nullable=False, default=0)  # employee-reported, 0–100

    # Written only by the task validation service
    manager_validated_percentage = Column(Integer, nullable=True)
    validated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    validated_at = Column(DateTime(timezone=True), nullable=True)
    validation_comment = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def effective_percentage(self) -> int:
        if self.manager_validated_percentage is not None:
            return self.manager_validated_percentage
        return self.progress_percentage or 0


class TaskOwner(Base):
    __tablename__ = "task_owners"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    share_percentage = Column(Integer, nullable=False, default=100)  # per task, shares sum to 100
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("task_id", "user_id", name="uq_task_owner"),)


class TaskValidationHistory(Base):
    __tablename__ = "task_validation_history"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    old_percentage = Column(Integer, nullable=False)
    new_percentage = Column(Integer, nullable=False)
    validated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)  # NULL once the validator is deleted
    validation_comment = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
