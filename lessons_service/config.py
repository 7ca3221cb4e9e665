from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./lessons.db"
    REDIS_URL: str = "redis://localhost:6379/0"
    SECRET_KEY: str = "dev-secret-lessons"
    JWT_ALGORITHM: str = "HS256"
    LOG_LEVEL: str = "INFO"
    CACHE_TTL: int = 300  # 5 minutes

    # Progress tracking
    PROGRESS_DEBOUNCE_SECONDS: float = 5.0
    COMPLETION_THRESHOLD: float = 0.90
    PROGRESS_API_URL: str = "http://localhost:8000"
    PROGRESS_API_TIMEOUT: float = 10.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
