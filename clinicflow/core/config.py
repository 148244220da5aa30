from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "ClinicFlow"
    API_V1_STR: str = "/api/v1"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_DB: str = "clinicflow"
    DATABASE_URL: Optional[str] = None
    AUTO_CREATE_TABLES: bool = True

    REDIS_URL: str = "redis://localhost:6379/0"

    SECRET_KEY: str = "change-me-in-production-please-32b"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Advisory collaborators; unset URLs mean "no recommendation"
    PREDICTOR_BASE_URL: Optional[str] = None
    PREDICTOR_TIMEOUT_SECONDS: float = 3.0
    NOTIFICATION_BASE_URL: Optional[str] = None
    NOTIFICATION_TIMEOUT_SECONDS: float = 2.0

    DEFAULT_DEPARTMENT: str = "General"
    DEFAULT_SERVICE_MINUTES: float = 15.0
    REMINDER_HORIZON_HOURS: int = 24

    class Config:
        case_sensitive = True
        env_file = ".env"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if not self.DATABASE_URL:
            self.DATABASE_URL = f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}/{self.POSTGRES_DB}"

settings = Settings()
