"""
EduChain Portal Configuration
Settings are read from environment variables (or a .env file).
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "EduChain Document Portal"
    app_version: str = "1.0.0"
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./educhain.db"

    # Logging
    log_level: str = "INFO"
    log_json_format: bool = False
    log_file: Optional[str] = None
    audit_log_dir: str = "logs/audit"

    # Sessions
    session_cookie_name: str = "educhain_session"
    session_ttl_minutes: int = 120
    session_cookie_secure: bool = False
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    redis_url: Optional[str] = None

    # Human-verification challenge (Google reCAPTCHA)
    recaptcha_secret_key: str = ""
    recaptcha_verify_url: str = "https://www.google.com/recaptcha/api/siteverify"
    recaptcha_timeout_seconds: float = 5.0

    # Verification oracle (Google Gemini)
    gemini_api_key: str = ""
    gemini_model: str = "gemini-1.5-flash"
    gemini_api_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    oracle_timeout_seconds: float = 30.0
    verification_confidence_threshold: float = Field(default=0.70, ge=0.0, le=1.0)

    # Attestation ledger
    attestation_backend: str = "local"  # local, http
    attestation_ledger_path: str = "data/attestations.jsonl"
    attestation_url: Optional[str] = None
    attestation_api_key: Optional[str] = None
    attestation_timeout_seconds: float = 15.0

    # Uploads
    upload_dir: str = "uploads"
    max_upload_size_mb: int = 50
    allowed_extensions: str = "pdf,doc,docx,jpg,jpeg,png"

    # CORS (comma-separated origins of the browser client)
    cors_origins: str = "http://localhost:3000"

    # Rate limiting and timeouts
    rate_limit_enabled: bool = True
    trust_proxy_headers: bool = False
    request_timeout_seconds: float = 30.0
    # Upload/verify budget; derived from the oracle and ledger timeouts when unset
    slow_request_timeout_seconds: Optional[float] = None

    @property
    def allowed_extensions_set(self) -> set[str]:
        return {ext.strip().lower() for ext in self.allowed_extensions.split(",") if ext.strip()}

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance (also usable as a FastAPI dependency)."""
    return Settings()
