import json
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_files() -> list[str]:
    """Load .env from the repository root, then the local working directory."""
    base = Path(__file__).resolve().parent.parent  # repository root
    return [str(base / ".env"), ".env"]


def _split_list(raw: str) -> list[str]:
    raw = raw.strip()
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(o).strip() for o in parsed if str(o).strip()]
        except (json.JSONDecodeError, ValueError):
            pass
    return [x.strip() for x in raw.split(",") if x.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=_env_files(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backend_base_url: str = "http://localhost:8000/api/v1"
    backend_timeout_secs: float = 10.0
    env_name: str = "development"
    cors_origins: str = "http://localhost:3000"

    # Embedded SCORM runtime origins trusted by the message listener
    scorm_origins: str = "https://cloud.scorm.com"
    scorm_origin_domain: str = "scorm.com"  # any host under this domain; "" disables

    # Debounce windows for the two sync channels
    local_sync_delay_secs: float = 1.0
    upstream_sync_delay_secs: float = 5.0

    # Optional redis mirror of dashboard records
    redis_url: str = ""
    dashboard_cache_ttl_secs: int = 86400  # 24 hours

    @property
    def cors_origins_list(self) -> list[str]:
        return _split_list(self.cors_origins)

    @property
    def scorm_origins_list(self) -> list[str]:
        return _split_list(self.scorm_origins)
