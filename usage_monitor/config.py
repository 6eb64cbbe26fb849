from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Usage monitor
    usage_monitor_enabled: bool = True
    config_dir: str = "~/.claude-usage-monitor"  # holds usage-monitor.json

    # Claude Code data location (comma-separated, same as the CLI's own env var)
    claude_config_dir: str = ""

    # Accounting window + refresh cadence
    session_window_hours: int = 5
    poll_interval_seconds: float = 30.0
    debounce_ms: int = 200

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"


settings = Settings()
