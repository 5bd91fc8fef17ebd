import os

os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.security import create_access_token
from app.database import Base, enable_sqlite_foreign_keys, get_db, get_session_factory
from app.main import app
from app.models.project import Project
from app.models.task import Task, TaskOwner
from app.models.time_log import TimeLog
from app.models.user import User


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


async def _create_engine(path, serialize_writers: bool = False):
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}")
    enable_sqlite_foreign_keys(engine)

    if serialize_writers:
        # Every transaction takes the database write lock up front, so two
        # sessions doing read-modify-write queue up like they would behind
        # SELECT ... FOR UPDATE on PostgreSQL.
        @event.listens_for(engine.sync_engine, "connect")
        def _disable_implicit_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = await _create_engine(tmp_path / "test.db")
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def serialized_engine(tmp_path):
    engine = await _create_engine(tmp_path / "serialized.db", serialize_writers=True)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


async def make_user(db, name: str, role: str = "EMPLOYEE", manager: User = None) -> User:
    user = User(
        email=f"{name.lower().replace(' ', '.')}@example.com",
        name=name,
        role=role,
        manager_id=manager.id if manager else None,
    )
    db.add(user)
    await db.commit()
    return user


async def make_project(db, name: str = "Platform") -> Project:
    project = Project(name=name)
    db.add(project)
    await db.commit()
    return project


async def make_task(db, project: Project, assignee: User, owners=None, **fields) -> Task:
    """``owners`` is a list of (user, share_percentage); omitted → no owner rows."""
    fields.setdefault("title", "Task")
    fields.setdefault("created_at", utc(2026, 10, 1, 9, 0))
    task = Task(project_id=project.id, assignee_id=assignee.id, **fields)
    db.add(task)
    await db.flush()
    for user, share in owners or []:
        db.add(TaskOwner(task_id=task.id, user_id=user.id, share_percentage=share))
    await db.commit()
    return task


async def log_time(db, task: Task, user: User, minutes: int, logged_at=None) -> TimeLog:
    log = TimeLog(task_id=task.id, user_id=user.id, minutes=minutes, logged_at=logged_at or utc(2026, 10, 5, 12, 0))
    db.add(log)
    await db.commit()
    return log
