"""Configuration loader for the ledger engine."""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
import os
from typing import Optional

from dotenv import load_dotenv

DEFAULT_STORAGE_KEY = "com.os.orb.transactionHistory"


def _get_int(value: Optional[str], default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(value: Optional[str], default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _get_decimal(value: Optional[str], default: str) -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    try:
        return Decimal(value)
    except InvalidOperation:
        return Decimal(default)


@dataclass(frozen=True)
class Settings:
    helius_api_key: str
    helius_rest_url: str
    helius_rpc_url: str
    jupiter_tokens_url: str
    redis_url: Optional[str]
    database_url: Optional[str]
    storage_key: str
    http_timeout_s: float
    sync_page_size: int
    backfill_cap: int
    forward_cap: int
    poll_interval_s: float
    poll_limit: int
    token_dust_threshold: Decimal
    native_threshold_with_tokens: Decimal
    native_threshold_only: Decimal
    resolver_retry_after_s: float
    undo_fees: bool
    api_host: str
    api_port: int
    log_level: str

    @property
    def storage_backend(self) -> str:
        if self.database_url:
            return "postgres"
        if self.redis_url:
            return "redis"
        return "memory"


def load_settings() -> Settings:
    load_dotenv()
    return Settings(
        helius_api_key=os.getenv("HELIUS_API_KEY", ""),
        helius_rest_url=os.getenv("HELIUS_REST_URL", "https://api-mainnet.helius-rpc.com"),
        helius_rpc_url=os.getenv("HELIUS_RPC_URL", "https://mainnet.helius-rpc.com"),
        jupiter_tokens_url=os.getenv(
            "JUPITER_TOKENS_URL", "https://lite-api.jup.ag/tokens/v2/tag?query=verified"
        ),
        redis_url=os.getenv("REDIS_URL") or None,
        database_url=os.getenv("DATABASE_URL") or None,
        storage_key=os.getenv("LEDGER_STORAGE_KEY", DEFAULT_STORAGE_KEY),
        http_timeout_s=_get_float(os.getenv("HTTP_TIMEOUT_SECONDS"), 30.0),
        sync_page_size=_get_int(os.getenv("SYNC_PAGE_SIZE"), 100),
        backfill_cap=_get_int(os.getenv("BACKFILL_CAP"), 10_000),
        forward_cap=_get_int(os.getenv("FORWARD_CAP"), 1_000),
        poll_interval_s=_get_float(os.getenv("POLL_INTERVAL_SECONDS"), 10.0),
        poll_limit=_get_int(os.getenv("POLL_LIMIT"), 10),
        token_dust_threshold=_get_decimal(os.getenv("TOKEN_DUST_THRESHOLD"), "0.000001"),
        native_threshold_with_tokens=_get_decimal(os.getenv("NATIVE_THRESHOLD_WITH_TOKENS"), "0.001"),
        native_threshold_only=_get_decimal(os.getenv("NATIVE_THRESHOLD_ONLY"), "0.01"),
        resolver_retry_after_s=_get_float(os.getenv("RESOLVER_RETRY_AFTER_SECONDS"), 60.0),
        undo_fees=_get_bool(os.getenv("UNDO_FEES"), True),
        api_host=os.getenv("API_HOST", "0.0.0.0"),
        api_port=_get_int(os.getenv("API_PORT"), 8000),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
