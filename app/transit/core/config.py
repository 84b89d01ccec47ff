from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    APP_NAME: str = "TRANSIT-FULFILLMENT"
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite+pysqlite:///./transit.db"
    LOG_LEVEL: str = "INFO"
    METRICS_ENABLED: bool = True
    TRANSFER_ORDER_NUMBER_PREFIX: str = "TO"
    TRANSFER_LIST_MAX_LIMIT: int = 250
    AUTO_ASSIGN_MAX_COMMITS: int = 500

settings = Settings()
