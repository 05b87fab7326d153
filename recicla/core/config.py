from pydantic_settings import BaseSettings, SettingsConfigDict
class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RECICLA_", env_file=".env", extra="ignore")
    DATABASE_URL: str = "sqlite:///./recicla.db"
    # seconds a SQLite writer waits for the database lock
    SQLITE_BUSY_TIMEOUT: float = 30.0

    SECRET_KEY: str = "recicla-dev-secret-change-me-in-production"
    TOKEN_ALGORITHM: str = "HS256"

    MIN_WEIGHT_KG: float = 0.1
    MAX_WEIGHT_KG: float = 1000.0

    MEDIA_ROOT: str = "static/uploads"
    MEDIA_URL: str = "/static/uploads"

    LOG_LEVEL: str = "INFO"
    RANKING_LIMIT: int = 10
    SEARCH_LIMIT: int = 20
settings = Settings()
