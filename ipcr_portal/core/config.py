import os
import logging
from pydantic import BaseModel, Field
from typing import List
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class EvidenceSettings(BaseModel):
    storage_root: str = Field(default=os.getenv("EVIDENCE_STORAGE_ROOT", "./storage/ipcr-attachments"))
    max_file_size: int = Field(default=int(os.getenv("EVIDENCE_MAX_FILE_SIZE", str(10 * 1024 * 1024))))
    form_limit: int = Field(default=int(os.getenv("EVIDENCE_FORM_LIMIT", "10")))
    indicator_limit: int = Field(default=int(os.getenv("EVIDENCE_INDICATOR_LIMIT", "5")))
    signed_url_ttl_seconds: int = Field(default=int(os.getenv("SIGNED_URL_TTL_SECONDS", "3600")))
    # Governs both the metadata policy check and the blob store's path-owner check
    allow_admin_delete: bool = Field(default=_env_flag("ALLOW_ADMIN_EVIDENCE_DELETE", "true"))
    accepted_types: List[str] = ["image/", "application/pdf"]


class Config(BaseModel):
    app_name: str = "IPCR Portal"
    environment: str = os.getenv("APP_ENV", "development")
    api_prefix: str = "/api"
    version: str = "1.0.0"
    request_id_header: str = "X-Request-ID"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./ipcr.db")

    # Identity tokens (issued by the external auth service)
    secret_key: str = os.getenv("SECRET_KEY", "dev-only-insecure-key-DO-NOT-USE-IN-PROD")
    token_algorithm: str = "HS256"
    access_token_expire_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))

    # Evidence files
    evidence: EvidenceSettings = EvidenceSettings()
    upload_rate_limit: str = os.getenv("UPLOAD_RATE_LIMIT", "30/minute")

    cors_origins: List[str] = Field(
        default_factory=lambda: [
            o.strip()
            for o in os.getenv(
                "CORS_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if o.strip()
        ]
    )


settings = Config()

# --- Startup Validation for Production ---
_logger = logging.getLogger(__name__)
if settings.environment not in ("development", "testing"):
    if "dev-only" in settings.secret_key:
        raise RuntimeError(
            "FATAL: SECRET_KEY must be set for non-development environments. "
            "Set it as an environment variable."
        )
else:
    if "dev-only" in settings.secret_key:
        _logger.warning("Using insecure default SECRET_KEY, only acceptable in development.")
