import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class LedgerSettings(BaseSettings):
    STORE_PATH: Path = BASE_DIR / "data" / "ledger.json"
    STORE_TIMEOUT_SECONDS: float = 5.0

    CACHE_SIZE: int = 2048
    # 100 years of months
    MAX_CHAIN_DEPTH: int = 1200
    # YYYY-MM; when set, replaces the category creation month as chain floor
    CHAIN_EPOCH: Optional[str] = None

    ACCESSIBLE_MONTHS_AHEAD: int = 1
    ENFORCE_MONTH_ACCESS: bool = True

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="LEDGER_", env_file=".env", case_sensitive=False)

    @field_validator("CHAIN_EPOCH")
    @classmethod
    def _check_epoch(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not MONTH_PATTERN.match(value):
            raise ValueError(f"CHAIN_EPOCH must be YYYY-MM, got {value!r}")
        return value

    @field_validator("STORE_TIMEOUT_SECONDS")
    @classmethod
    def _check_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("STORE_TIMEOUT_SECONDS must be positive")
        return value

    @field_validator("CACHE_SIZE", "MAX_CHAIN_DEPTH")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("ACCESSIBLE_MONTHS_AHEAD")
    @classmethod
    def _check_ahead(cls, value: int) -> int:
        if value < 0:
            raise ValueError("ACCESSIBLE_MONTHS_AHEAD cannot be negative")
        return value


@lru_cache(maxsize=None)
def get_settings() -> LedgerSettings:
    return LedgerSettings()


def configure_logging(level: Optional[str] = None) -> None:
    """Install the ledger log format on the root logger (once) and set the level."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger("ledger").setLevel((level or get_settings().LOG_LEVEL).upper())
