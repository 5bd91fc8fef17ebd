# app/main.py
import logging
from fastapi import FastAPI
from sqlalchemy import exc as sa_exc
from app.config import settings
from app.database import engine, Base
from app.core.exceptions import register_exception_handlers
from app.models import user, project, task, time_log, performance, feedback, audit, setting, sync_log, report  # noqa: F401 (register tables)
from app.routers import auth, task as task_router, performance as performance_router, feedback as feedback_router
from app.routers import users, dashboard, settings as settings_router, reports as reports_router, sync as sync_router
from app.services.scheduler import PerformanceScheduler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(title="Performance Mirror - Employee Performance Tracking", version="1.0")
app.state.scheduler = PerformanceScheduler()

register_exception_handlers(app)

# Include Routers
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(task_router.router)
app.include_router(performance_router.router)
app.include_router(feedback_router.router)
app.include_router(dashboard.router)
app.include_router(settings_router.router)
app.include_router(reports_router.router)
app.include_router(sync_router.router)

# Create DB tables for local runs; use Alembic in prod
@app.on_event("startup")
async def startup_event():
    # ignore duplicate-object errors from previous partial runs.
    async with engine.begin() as conn:
        try:
            await conn.run_sync(Base.metadata.create_all)
        except sa_exc.IntegrityError as e:
            msg = str(getattr(e, "orig", e))
            if "duplicate key value violates unique constraint" in msg or "already exists" in msg:
                logger.warning("Ignored duplicate DDL error during create_all: %s", msg)
            else:
                raise

    if settings.SCHEDULER_ENABLED:
        app.state.scheduler.start()
        await app.state.scheduler.apply_stored_schedules()


@app.on_event("shutdown")
async def shutdown_event():
    app.state.scheduler.stop()
    await engine.dispose()


@app.get("/")
def read_root():
    return {"message": "Welcome to the Performance Mirror backend"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
