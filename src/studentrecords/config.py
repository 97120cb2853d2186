from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings

PORTAL_SESSION_DIR_DEFAULT = Path.home() / ".studentrecords" / "portal_session"


class Settings(BaseSettings):
    portal_base_url: str = "https://portal-api.dlu.edu.vn/api"
    portal_api_key: str = ""
    portal_client_id: str = "vhu"
    portal_username: str = ""
    portal_password: str = ""
    portal_auth_mode: str = "interactive"  # "interactive" or "service"
    portal_timeout_seconds: float = 30.0
    portal_session_dir: Path = PORTAL_SESSION_DIR_DEFAULT
    school_email_domain: str = "dlu.edu.vn"
    sync_throttle_seconds: float = 0.1
    database_url: str = "sqlite:///./studentrecords.db"
    sync_class_ids: List[str] = []
    nightly_sync_hour: int = 2
    triggered_by_default: Optional[str] = "portal-user"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
