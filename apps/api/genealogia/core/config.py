"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "0.01.00"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # Permission snapshots
    PERMISSION_CACHE_TTL_SECONDS: int = 600

    # Target resolver caches
    TARGET_CACHE_TTL_SECONDS: int = 600
    TARGET_CACHE_MAX_LLIBRES: int = 10000
    TARGET_CACHE_MAX_ARXIUS: int = 5000
    TARGET_CACHE_MAX_MUNICIPIS: int = 5000

    # Background jobs
    BACKGROUND_WORKERS: int = 4
    JOB_LOG_LIMIT: int = 200

    # Wiki guardrails
    WIKI_MAX_METADATA_BYTES: int = 64 * 1024
    WIKI_MAX_PENDING_PER_OBJECT: int = 200
    WIKI_MAX_PENDING_PER_USER_OBJECT: int = 10

    # Policy documents
    POLICY_DOCUMENT_VERSION: str = "2024-02-07"

    @property
    def is_dev(self) -> bool:
        return self.ENV.lower() in ("dev", "development", "test")

    @property
    def jwt_secrets(self) -> list[str]:
        """Secrets accepted for token verification, current first."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets


settings = Settings()
