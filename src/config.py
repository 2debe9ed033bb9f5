from __future__ import annotations

from functools import cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ARTIFACTS_DIR = PROJECT_ROOT / "artifacts"
DB_FILE = ARTIFACTS_DIR / "treasury.db"


class AppSettings(BaseSettings):
    db_file: Path = DB_FILE
    db_echo: bool = False
    log_level: str = "INFO"
    reconciliation_default_days: int = 30
    default_cost_basis_method: str = "FIFO"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="TREASURY_", extra="ignore"
    )


@cache
def config() -> AppSettings:
    return AppSettings()
