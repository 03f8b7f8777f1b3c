import os
from datetime import timedelta, timezone

from dotenv import load_dotenv

load_dotenv()


# Timezone configuration
TIMEZONE_NAME = os.getenv("TIMEZONE", "UTC")

_TZ_OFFSETS = {
    "Asia/Jakarta": timedelta(hours=7),
    "Asia/Shanghai": timedelta(hours=8),
    "Asia/Singapore": timedelta(hours=8),
    "Asia/Tokyo": timedelta(hours=9),
    "UTC": timedelta(hours=0),
    "Europe/London": timedelta(hours=0),
    "America/New_York": timedelta(hours=-5),
    "America/Los_Angeles": timedelta(hours=-8),
}

LOCAL_TZ = timezone(_TZ_OFFSETS.get(TIMEZONE_NAME, timedelta(hours=0)))


def _optional_float(name: str) -> float | None:
    raw = os.getenv(name, "").strip()
    if not raw or raw.lower() in ("none", "inf", "infinity"):
        return None
    return float(raw)


class Config:
    # Wallet (live gateway only)
    PRIVATE_KEY: str = os.getenv("PRIVATE_KEY", os.getenv("POLY_PRIVATE_KEY", ""))
    FUNDER_ADDRESS: str = os.getenv("FUNDER_ADDRESS", "")
    SIGNATURE_TYPE: int = int(os.getenv("SIGNATURE_TYPE", "0"))  # 0=EOA, 1=proxy, 2=safe

    # Polymarket APIs
    DATA_API: str = os.getenv("DATA_API", "https://data-api.polymarket.com")
    CLOB_API: str = os.getenv("CLOB_API", "https://clob.polymarket.com")
    CHAIN_ID = 137  # Polygon mainnet

    # Copy targets
    COPY_ADDRESSES: list[str] = [
        w.strip() for w in os.getenv("COPY_ADDRESSES", "").split(",") if w.strip()
    ]

    # Mode: anything but the literal "false" stays in dry run
    DRY_RUN: bool = os.getenv("DRY_RUN", "true").lower() != "false"

    # Sizing / risk
    SIZE_SCALE: float = float(os.getenv("SIZE_SCALE", "0.3"))
    MAX_SIZE_PER_TRADE: float | None = _optional_float("MAX_SIZE_PER_TRADE")
    MAX_SLIPPAGE: float = float(os.getenv("MAX_SLIPPAGE", "0.05"))
    MIN_TRADE_SIZE: float = float(os.getenv("MIN_TRADE_SIZE", "0"))
    MIN_ORDER_VALUE_USD: float = float(os.getenv("MIN_ORDER_VALUE_USD", "1"))
    MAX_PRICE_PER_SHARE: float = float(os.getenv("MAX_PRICE_PER_SHARE", "0.96"))
    ORDER_KIND: str = os.getenv("ORDER_KIND", "FOK").upper()

    # Feed polling
    FEED_RATE_BUDGET: int = int(os.getenv("FEED_RATE_BUDGET", "120"))  # requests/min
    POLL_INTERVAL_SHORT: float = float(os.getenv("POLL_INTERVAL_SHORT", "5"))
    POLL_INTERVAL_MEDIUM: float = float(os.getenv("POLL_INTERVAL_MEDIUM", "15"))
    POLL_INTERVAL_LONG: float = float(os.getenv("POLL_INTERVAL_LONG", "30"))
    POLL_LOOKBACK_SECONDS: int = int(os.getenv("POLL_LOOKBACK_SECONDS", "5"))
    ACTIVITY_LIMIT: int = int(os.getenv("ACTIVITY_LIMIT", "100"))
    SEEN_HASH_CAP: int = int(os.getenv("SEEN_HASH_CAP", "1000"))

    # Order confirmation
    CONFIRM_POLL_INTERVAL: float = float(os.getenv("CONFIRM_POLL_INTERVAL", "2"))
    CONFIRM_TIMEOUT_LIMIT: float = float(os.getenv("CONFIRM_TIMEOUT_LIMIT", "15"))
    CONFIRM_TIMEOUT_MARKET: float = float(os.getenv("CONFIRM_TIMEOUT_MARKET", "10"))
    CREDIT_PARTIAL_FILLS: bool = (
        os.getenv("CREDIT_PARTIAL_FILLS", "false").lower() == "true"
    )

    # Trade handling workers
    MAX_CONCURRENT_TRADES: int = int(os.getenv("MAX_CONCURRENT_TRADES", "4"))

    # Reporting
    STATS_INTERVAL: float = float(os.getenv("STATS_INTERVAL", "60"))
    COPY_TRADE_LOG_DIR: str = os.getenv(
        "COPY_TRADE_LOG_DIR", "/tmp/crypto-copy-trade-logs"
    )

    # REST client settings
    REST_TIMEOUT: float = float(os.getenv("REST_TIMEOUT", "3"))
    REST_RETRIES: int = int(os.getenv("REST_RETRIES", "2"))

    # Resilience settings
    CIRCUIT_BREAKER_THRESHOLD: int = int(os.getenv("CIRCUIT_BREAKER_THRESHOLD", "5"))
    CIRCUIT_BREAKER_RECOVERY_TIME: int = int(
        os.getenv("CIRCUIT_BREAKER_RECOVERY_TIME", "60")
    )

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
