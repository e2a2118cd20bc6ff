"""
Trace Extractor Configuration.

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables.
"""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_state_dir() -> str:
    """
    Get XDG-compliant state directory for Trace Extractor logs.

    Follows XDG Base Directory Specification:
    - Uses $XDG_STATE_HOME/trace-extractor if XDG_STATE_HOME is set
    - Falls back to $HOME/.local/state/trace-extractor if not set
    - Returns relative path ./logs if HOME not available (dev/testing)

    Returns:
        str: Path to state/logs directory
    """
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return str(Path(xdg_state_home) / "trace-extractor" / "logs")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "trace-extractor" / "logs")

    # Fallback for development/testing environments without HOME
    return "./logs"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Data source
    cursor_db_path: str = ""  # Empty = platform default location
    cline_tasks_dir: str = ""  # Empty = Cline tasks are not read

    # Export
    output_dir: str = "./exported-conversations"
    recent_limit: int = 10  # Conversations shown by `list` and `export`
    default_format: str = "markdown"  # markdown or json

    # Logging
    log_level: str = "WARNING"
    log_dir: str = ""  # XDG-compliant log directory (defaults to XDG state dir if empty)
    log_format: str = "standard"  # standard or json
    log_console_enabled: bool = True  # Log to stderr
    log_file_enabled: bool = False  # Enable file-based logging
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5  # Keep 5 backup files

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir())

    @property
    def database_path(self) -> Path | None:
        """Configured database path, or None to use the platform default."""
        if self.cursor_db_path:
            return Path(self.cursor_db_path).expanduser()
        return None

    @property
    def cline_tasks_path(self) -> Path | None:
        """Configured Cline tasks directory, or None when Cline is not read."""
        if self.cline_tasks_dir:
            return Path(self.cline_tasks_dir).expanduser()
        return None


# Global settings instance
settings = Settings()
