from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field("sqlite:///civic_issues.db", env="DATABASE_URL")
    api_title: str = Field("Civic Issues API", env="API_TITLE")
    log_level: str = Field("INFO", env="LOG_LEVEL")
    access_token_expire_minutes: int = Field(60 * 24 * 7, env="ACCESS_TOKEN_EXPIRE_MINUTES")
    jwt_secret: str = Field("secret", env="JWT_SECRET")
    jwt_algorithm: str = Field("HS256", env="JWT_ALGORITHM")
    rate_limit_enabled: bool = Field(True, env="RATE_LIMIT_ENABLED")
    mutation_rate_limit: str = Field("30/minute", env="MUTATION_RATE_LIMIT")
    storage_api_url: str | None = Field(None, env="STORAGE_API_URL")
    storage_api_key: str | None = Field(None, env="STORAGE_API_KEY")
    storage_folder: str = Field("lok-awaaz/issues", env="STORAGE_FOLDER")
    storage_timeout: float = Field(10.0, env="STORAGE_TIMEOUT")
    strict_status_transitions: bool = Field(False, env="STRICT_STATUS_TRANSITIONS")


settings = Settings()
