import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_WEBHOOK_URL = "https://opticat.app.n8n.cloud/webhook/04d3ce21-08a5-4ac9-90a9-4fe11789804d"
DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://127.0.0.1:3000"
STORAGE_STRATEGIES = {"memory", "disk"}

_DEFAULT_TIMEOUTS = {"memory": 300.0, "disk": 30.0}


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000
    webhook_url: str = DEFAULT_WEBHOOK_URL
    upload_storage: str = "memory"
    staging_dir: Path = Path("uploads")
    max_upload_bytes: int = 10 * 1024 * 1024
    upload_timeout_s: float | None = None
    wrap_upload_response: bool | None = None
    sf_login_url: str = ""
    sf_client_id: str = ""
    sf_client_secret: str = ""
    sf_timeout_s: float = 30.0
    cors_allowed_origins: list[str] = field(
        default_factory=lambda: _split_csv(DEFAULT_CORS_ORIGINS)
    )
    log_level: str = "INFO"
    log_json: bool = True

    def __post_init__(self) -> None:
        if self.upload_storage not in STORAGE_STRATEGIES:
            raise ValueError(
                f"UPLOAD_STORAGE must be one of {sorted(STORAGE_STRATEGIES)}, got {self.upload_storage!r}"
            )
        if self.upload_timeout_s is None:
            object.__setattr__(self, "upload_timeout_s", _DEFAULT_TIMEOUTS[self.upload_storage])
        if self.wrap_upload_response is None:
            object.__setattr__(self, "wrap_upload_response", self.upload_storage == "disk")
        if self.max_upload_bytes <= 0:
            raise ValueError("MAX_UPLOAD_BYTES must be positive")
        if self.upload_timeout_s <= 0:
            raise ValueError("UPLOAD_TIMEOUT_SECONDS must be positive")
        if self.sf_timeout_s <= 0:
            raise ValueError("SF_TIMEOUT_SECONDS must be positive")


def load_settings() -> Settings:
    load_dotenv()
    storage = os.getenv("UPLOAD_STORAGE", "memory").strip().lower()
    return Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
        webhook_url=os.getenv("WEBHOOK_URL", DEFAULT_WEBHOOK_URL),
        upload_storage=storage,
        staging_dir=Path(os.getenv("STAGING_DIR", "uploads")),
        max_upload_bytes=int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024))),
        upload_timeout_s=_env_float("UPLOAD_TIMEOUT_SECONDS"),
        wrap_upload_response=_env_bool("WRAP_UPLOAD_RESPONSE", None),
        sf_login_url=os.getenv("SF_LOGIN_URL", ""),
        sf_client_id=os.getenv("SF_CLIENT_ID", ""),
        sf_client_secret=os.getenv("SF_CLIENT_SECRET", ""),
        sf_timeout_s=float(os.getenv("SF_TIMEOUT_SECONDS", "30")),
        cors_allowed_origins=_split_csv(os.getenv("CORS_ALLOWED_ORIGINS", DEFAULT_CORS_ORIGINS)),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=_env_bool("LOG_JSON", True),
    )


def _env_float(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return float(raw)


def _env_bool(name: str, default: bool | None) -> bool | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]
