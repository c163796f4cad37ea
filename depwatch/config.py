"""
Runtime settings, read from the environment.

A .env file in the working directory is loaded first; variables already set
in the environment win.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .registry import DEFAULT_REGISTRY_URL


def load_env() -> None:
    """Load .env from the working directory if present."""
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path)


@dataclass
class Settings:
    db_path: Path = Path("data/depwatch.db")
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    registry_url: str = DEFAULT_REGISTRY_URL
    conflict_retries: int = 3


def load_settings() -> Settings:
    """Build Settings from DEPWATCH_* environment variables."""
    load_env()
    defaults = Settings()
    retries = os.getenv("DEPWATCH_CONFLICT_RETRIES")
    try:
        conflict_retries = int(retries) if retries else defaults.conflict_retries
    except ValueError:
        raise SystemExit(f"DEPWATCH_CONFLICT_RETRIES must be an integer, got {retries!r}")

    return Settings(
        db_path=Path(os.getenv("DEPWATCH_DB_PATH") or defaults.db_path),
        log_level=(os.getenv("DEPWATCH_LOG_LEVEL") or defaults.log_level).upper(),
        log_dir=Path(os.getenv("DEPWATCH_LOG_DIR") or defaults.log_dir),
        registry_url=os.getenv("DEPWATCH_REGISTRY_URL") or defaults.registry_url,
        conflict_retries=conflict_retries,
    )
