from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "Tablet Loan Tracker API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://postgres:postgres@db:5432/tablet_loans"
    TEST_DATABASE_URL: str = "postgresql+asyncpg://postgres:postgres@db:5432/tablet_loans_test"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 5

    # JWT
    JWT_SECRET_KEY: str = "change-me-to-a-random-secret-key-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Built-in admin, created at startup when missing
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str = "admin123456"

    LOG_LEVEL: str = "INFO"

    # Loss report attachments
    UPLOAD_DIR: str = "uploads"
    MAX_UPLOAD_SIZE_MB: int = 10
    ALLOWED_DOCUMENT_EXTENSIONS: set[str] = {".pdf", ".png", ".jpg", ".jpeg", ".doc", ".docx"}

    RECENT_ACTIVITY_LIMIT: int = 10

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator("ALLOWED_DOCUMENT_EXTENSIONS")
    @classmethod
    def normalize_extensions(cls, v: set[str]) -> set[str]:
        return {ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in v}

    @property
    def max_upload_bytes(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024


settings = Settings()
