from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./replisync.db"
    mode: str = "slave"  # "master" or "slave"; only slaves run scheduled cycles

    # Master endpoints
    sync_url: str = "http://localhost:8000/api/sync"
    sync_timeout: float = 25.0
    sync_max_retries: int = 1

    # Connectivity gate
    probe_hosts: List[str] = ["www.google.com", "www.cloudflare.com", "www.amazon.com"]
    probe_port: int = 80
    probe_timeout: float = 3.0

    # Pull cursors
    default_start_date: str = "2025-07-07 00:00:00"
    cursor_dir: str = "./sync_data"

    # Change log
    change_logging_enabled: bool = True
    retention_days: int = 7
    stale_syncing_minutes: int = 10
    excluded_entities: List[str] = [
        "PasswordReset",
        "OauthAccessToken",
        "OauthRefreshToken",
        "role_user",
        "sms_gateway",
        "Server",
    ]

    # Scheduler
    sync_interval_minutes: int = 1
    cleanup_hour: int = 3

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "REPLISYNC_"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
