from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Optional


class Settings(BaseSettings):
    # Database Configuration
    database_url: Optional[str] = None
    db_username: Optional[str] = None
    db_password: Optional[str] = None
    db_host: str = "localhost"
    db_port: str = "5432"
    db_name: Optional[str] = None

    # Authentication
    secret_key: str = "change-me-in-env"
    algorithm: str = "HS256"
    access_token_expire_minutes: Optional[int] = 480

    @field_validator('algorithm', mode='before')
    @classmethod
    def parse_algorithm(cls, v):
        if v is None or v == '':
            return "HS256"
        return v

    @field_validator('access_token_expire_minutes', mode='before')
    @classmethod
    def parse_token_expire(cls, v):
        if v is None or v == '':
            return 480
        return int(v)

    # Backend reads: bounded retry with exponential backoff
    backend_retry_attempts: int = 3
    backend_retry_backoff_seconds: float = 0.5

    # Transient user notifications kept for GET /api/notifications
    notification_history_size: int = 50

    # Rate limiting (auth endpoints)
    rate_limit_enabled: bool = True
    login_rate_limit: str = "5/minute"

    cors_origins: List[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    # Prefilled technician for new service orders
    default_technician: Optional[str] = None

    @property
    def database_connection_url(self) -> str:
        """Build database URL from individual components or use direct URL"""
        if all([self.db_username, self.db_password, self.db_host, self.db_port, self.db_name]):
            return f"postgresql://{self.db_username}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"
        elif self.database_url:
            return self.database_url
        else:
            return "sqlite:///./fieldservice.db"  # Fallback to SQLite

    class Config:
        env_file = ".env"


settings = Settings()
