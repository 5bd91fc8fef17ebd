from pydantic_settings import BaseSettings
from typing import Optional
from pydantic import Field

class Settings(BaseSettings):
    SECRET_KEY: str = Field("change-me-in-production")
    ALGORITHM: str = Field("HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(30)
    REFRESH_TOKEN_EXPIRE_DAYS: int = Field(7)

    DATABASE_URL: Optional[str] = None
    SQLALCHEMY_DATABASE_URL: Optional[str] = None
    SQL_ECHO: bool = Field(False)

    LOG_LEVEL: str = Field("INFO")

    # Periodic jobs
    SCHEDULER_ENABLED: bool = Field(True)
    SCORING_INTERVAL_HOURS: int = Field(24)
    SYNC_INTERVAL_MINUTES: int = Field(60)

    # External project-management API. If unset → sync job does nothing.
    PROJECT_API_BASE_URL: Optional[str] = None
    PROJECT_API_TOKEN: Optional[str] = None
    PROJECT_API_TIMEOUT_SECONDS: float = Field(30.0)

    # Users created from imported owner names get <first.last>@<domain>
    IMPORT_EMAIL_DOMAIN: str = Field("company.com")

    # Rendered reports are POSTed here as JSON. If unset → deliveries are logged as failed.
    REPORT_WEBHOOK_URL: Optional[str] = None
    REPORT_WEBHOOK_TOKEN: Optional[str] = None
    REPORT_WEBHOOK_TIMEOUT_SECONDS: float = Field(15.0)

    # Used until HR stores a data_retention setting
    DATA_RETENTION_DAYS: int = Field(365)

    model_config = {
        "env_file": ".env",
        "extra": "allow",
    }

    @property
    def effective_database_url(self) -> str:
        url = self.SQLALCHEMY_DATABASE_URL or self.DATABASE_URL or "sqlite+aiosqlite:///./performance.db"
        # Ensure asyncpg is used
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

settings = Settings()
