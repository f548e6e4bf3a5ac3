"""
Global configuration entry‑point.

▪ Loads environment variables from `.env` (if present)
▪ Exposes a single singleton `settings` object
▪ Every component takes its knobs as constructor arguments that default to
  values read from here, so tests never need a `.env`
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ──────────────────────────────────────────────────────────────
# 0. Load .env early so that pydantic can pick up the variables
# ──────────────────────────────────────────────────────────────
load_dotenv()

DEFAULT_POOLS = ("land", "transport", "avatar", "bonus")
EXPORT_HEADERS = ("user", "staked", "unstaked", "total", "factor")


# ──────────────────────────────────────────────────────────────
# 1. Settings object (use everywhere instead of os.getenv)
# ──────────────────────────────────────────────────────────────
class _Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # --- General process switches ------------------------------------------------
    LOG_LEVEL: str = "INFO"  # DEBUG / INFO / WARNING / ERROR
    JSON_LOGS: bool = False

    # --- Block resolution --------------------------------------------------------
    CHAIN_NAME: str = "ethereum"
    BLOCK_API_URL: str = "https://coins.llama.fi"

    # --- Indexing service (subgraph) ---------------------------------------------
    SUBGRAPH_ENDPOINT: str = "http://localhost:8000/subgraphs/name/referral"
    POOLS: str = ",".join(DEFAULT_POOLS)
    PAGE_SIZE: int = 1000
    HTTP_TIMEOUT: float = 30.0

    # --- Snapshot builder --------------------------------------------------------
    BATCH_SIZE: int = 50
    BATCH_COOLDOWN_SECONDS: float = 10.0
    FETCH_MAX_TRIES: int = 3
    FETCH_RETRY_SECONDS: float = 5.0

    # --- Snapshot store ----------------------------------------------------------
    S3_API_URL: str = "http://localhost:3000"
    S3_API_KEY: str = Field("", repr=False)
    STORE_MAX_TRIES: int = 3

    # --- Ledger ------------------------------------------------------------------
    RPC_URL: str = "https://rpc.ankr.com/goerli"
    CHAIN_ID: int = 5
    REFERRAL_CONTRACT_ADDRESS: Optional[str] = None
    MANAGER_PRIVATE_KEY: str = Field("", repr=False)
    SYNC_MAX_TRIES: int = 3
    SYNC_RETRY_SECONDS: float = 60.0
    TX_TIMEOUT_SECONDS: int = 120

    # --- Export / schedule -------------------------------------------------------
    EXPORT_DIR: str = "exports/snapshots"
    EXPORT_CSV: bool = True
    SCHEDULE_HOUR_UTC: int = 0

    # helpful computed values -----------------------------------------------------
    @property
    def pool_list(self) -> List[str]:
        return [p.strip() for p in self.POOLS.split(",") if p.strip()]

    @field_validator("LOG_LEVEL")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
        v_up = v.upper()
        if v_up not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}")
        return v_up

    @field_validator("PAGE_SIZE", "BATCH_SIZE", "FETCH_MAX_TRIES", "STORE_MAX_TRIES", "SYNC_MAX_TRIES")
    @classmethod
    def _validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("SCHEDULE_HOUR_UTC")
    @classmethod
    def _validate_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("SCHEDULE_HOUR_UTC must be within 0..23")
        return v


@lru_cache(maxsize=1)
def get_settings() -> _Settings:
    """Singleton accessor – import this everywhere."""
    return _Settings()


# instantiate once for module‑level use
settings = get_settings()
