import secrets

from pydantic_settings import BaseSettings


def _generate_dev_secret() -> str:
    """Generate a random secret for local development only."""
    return secrets.token_hex(32)


class Settings(BaseSettings):
    # App
    app_name: str = "StudyForge"
    debug: bool = False
    environment: str = "development"  # development, production
    log_level: str = ""  # DEBUG, INFO, WARNING, ERROR, CRITICAL (empty = auto based on environment)
    log_to_file: bool = True  # Enable file logging
    log_dir: str = ""  # Directory for log files (empty = ./logs beside the package)

    # Persistence: "database" (SQLAlchemy) or "memory" (process-local arena)
    storage_backend: str = "database"
    # SQLite for local dev, PostgreSQL for production
    database_url: str = "sqlite:///./studyforge.db"

    # Uploads
    upload_dir: str = "./uploads"
    max_upload_size_mb: int = 10
    extraction_timeout_seconds: float = 120.0
    extraction_retries: int = 0  # extra attempts after the first failure
    stale_processing_minutes: int = 30

    # JWT: no default, must be set via SECRET_KEY env var in production.
    # In development, a random key is generated per-process if not set.
    secret_key: str = ""
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    # Frontend
    frontend_url: str = "http://localhost:5173"

    # CORS (comma-separated origins, empty = local defaults)
    allowed_origins: str = ""

    # Rate limiting (slowapi)
    rate_limit_enabled: bool = True

    # Anthropic Claude
    anthropic_api_key: str = ""
    claude_model: str = "claude-sonnet-4-5-20250929"
    generation_max_chars: int = 4000
    generation_timeout_seconds: float = 90.0

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def max_upload_size(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


settings = Settings()

# Validate secret key
_KNOWN_WEAK_KEYS = {"your-secret-key-here", "changeme", "secret", ""}

if settings.secret_key in _KNOWN_WEAK_KEYS:
    if settings.environment == "production":
        raise RuntimeError(
            "SECRET_KEY is not set or uses a known weak default. "
            "Set a strong SECRET_KEY env var (e.g. `openssl rand -hex 32`)."
        )
    # Development: generate a random key so the app can start
    settings.secret_key = _generate_dev_secret()

if settings.storage_backend not in ("database", "memory"):
    raise RuntimeError(
        f"Unknown STORAGE_BACKEND '{settings.storage_backend}'. Use 'database' or 'memory'."
    )
