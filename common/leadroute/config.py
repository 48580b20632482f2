from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_USER: str = "leadroute"
    POSTGRES_PASSWORD: str = "leadroute"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "leadroute"
    DATABASE_URL: str = ""

    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_STREAM: str = "lead_events"
    REDIS_CONSUMER_GROUP: str = "triage_group"
    MAX_CONCURRENT_REQUESTS: int = 10

    BATCH_SIZE: int = 1
    STREAM_BLOCK_TIME: int = 5000

    CLASSIFIER_ADAPTER: str = "rule_based"
    EXISTING_CUSTOMER_DOMAINS: List[str] = []

    CONFIG_REDIS_KEY: str = "leadroute:configuration"
    CONFIG_CACHE_TTL: float = 60.0
    CONFIG_FETCH_TIMEOUT: float = 2.0

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def database_url(self) -> str:
        """Constructs PostgreSQL connection URL for asyncpg unless DATABASE_URL is set."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        user = self.POSTGRES_USER
        password = self.POSTGRES_PASSWORD
        host = self.POSTGRES_HOST
        port = self.POSTGRES_PORT
        db = self.POSTGRES_DB
        return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{db}"


settings = Settings()
