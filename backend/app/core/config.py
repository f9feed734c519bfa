"""Application configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed settings exposed via dependency injection throughout the app."""

    # Read .env with BOM tolerance; case-sensitive keys
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=True,
    )

    APP_NAME: str = "CFL API"
    ENV: str = "dev"  # dev | staging | prod
    DEBUG: bool = False
    PORT: int = 4000

    # CORS
    CORS_ALLOWED_ORIGINS: list[str] = Field(default_factory=list)

    # DB (cfl)
    DB_HOST: str = "127.0.0.1"
    DB_PORT: int = 3306
    DB_USER: str = "cfl_app"
    DB_PASSWORD: str = ""  # set via env/.env
    DB_NAME: str = "cfl"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ISOLATION_LEVEL: str = "READ COMMITTED"
    DB_RETRY_ATTEMPTS: int = 4
    DB_RETRY_BASE_DELAY: float = 0.05
    DB_RETRY_JITTER: float = 0.025
    INNODB_LOCK_WAIT_TIMEOUT_SEC: int = 10
    SELECT_MAX_EXECUTION_TIME_MS: int = 5000
    DB_NOWAIT_LOCKS: bool = False

    # Authorization context lookups are cached per hint for this many seconds.
    AUTH_CACHE_TTL_SEC: int = 30
    AUTH_CACHE_MAX_ENTRIES: int = 1000

    # Rate limit for folio creation / auto-ingest bursts.
    # See app.core.rate_limit.limiter for syntax.
    RATE_LIMIT_ENABLED: bool = True
    FOLIO_MUTATION_RATE: str = "30/minute"

    DEFAULT_PAGE_SIZE: int = 25
    MAX_PAGE_SIZE: int = 500
    MAX_REQUEST_BYTES: int = 1 * 1024 * 1024  # 1 MB

    @property
    def DATABASE_URL(self) -> str:
        return (
            f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4"
        )


settings = Settings()
