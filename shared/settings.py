from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, Optional

class Settings(BaseSettings):
    APP_NAME: str = "RFQ Desk"
    LOG_LEVEL: str = "INFO"
    DB_ECHO_LOG: bool = False

    # Database settings
    DB_USER: str = "user"
    DB_PASSWORD: str = "password"
    DB_HOST: str = "postgres"
    DB_PORT: int = 5432
    DB_NAME: str = "rfq_desk_db"

    # Full DSN, e.g. "sqlite+aiosqlite:///./rfq_desk.db" for local runs
    DATABASE_URL_OVERRIDE: Optional[str] = None

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # RFQ lifecycle
    RFQ_DEFAULT_TTL_DAYS: int = 30
    RFQ_NUMBER_MAX_ATTEMPTS: int = 5
    SWEEP_BATCH_SIZE: int = 500

    # Transition notifications. Without a URL, transitions are only logged.
    NOTIFY_WEBHOOK_URL: Optional[str] = None
    NOTIFY_WEBHOOK_TOKEN: Optional[str] = None

    # Bearer token -> "userId:ROLE", supplied as JSON in the environment
    AUTH_TOKENS: Dict[str, str] = {}

    # When "true", X-User-Id / X-User-Role headers are trusted instead of a token
    TEST_AUTH_BYPASS: str = "false"

    model_config = SettingsConfigDict(env_file=".env", extra='ignore', env_file_encoding='utf-8')

settings = Settings()
