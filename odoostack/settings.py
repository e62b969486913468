from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    config_file: str = os.getenv("ODS_CONFIG_FILE", "setup.conf")
    journal_path: str = os.getenv("ODS_JOURNAL_PATH", "odoostack.db")
    os_release_path: str = os.getenv("ODS_OS_RELEASE", "/etc/os-release")
    sshd_config_path: str = os.getenv("ODS_SSHD_CONFIG", "/etc/ssh/sshd_config")

    # Checks
    min_memory_gb: int = _env_int("ODS_MIN_MEMORY_GB", 2)
    connectivity_url: str = os.getenv("ODS_CONNECTIVITY_URL", "https://1.1.1.1")
    health_timeout_s: int = _env_int("ODS_HEALTH_TIMEOUT_S", 5)
    status_log_tail: int = _env_int("ODS_STATUS_LOG_TAIL", 200)
    status_event_count: int = _env_int("ODS_STATUS_EVENT_COUNT", 10)
    manage_docker_group: bool = _env_bool("ODS_MANAGE_DOCKER_GROUP", True)

    # Email alerting on failed runs (optional)
    enable_email: bool = _env_bool("ODS_ENABLE_EMAIL", False)
    smtp_host: str = os.getenv("ODS_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("ODS_SMTP_PORT", 587)
    smtp_user: str | None = os.getenv("ODS_SMTP_USER")
    smtp_password: str | None = os.getenv("ODS_SMTP_PASSWORD")
    email_from: str | None = os.getenv("ODS_EMAIL_FROM")
    email_to: str | None = os.getenv("ODS_EMAIL_TO")


settings = Settings()
