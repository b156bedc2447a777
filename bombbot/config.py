"""Bombbot — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


_REQUIRED_VARS = [
    "OANDA_ACCOUNT_ID",
    "OANDA_API_TOKEN",
    "OANDA_ENVIRONMENT",
]

# OANDA candle granularities the engine may be started on.
VALID_GRANULARITIES = (
    "S5", "S10", "S15", "S30",
    "M1", "M2", "M4", "M5", "M10", "M15", "M30",
    "H1", "H2", "H3", "H4", "H6", "H8", "H12",
    "D", "W", "M",
)

_BREAKOUT_POLICIES = ("candle_extreme", "previous_midpoint")


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    oanda_account_id: str
    oanda_api_token: str
    oanda_environment: str  # "practice" or "live"
    trade_pair: str
    bar_granularity: str
    bar_count: int
    poll_interval_seconds: int
    start_message: str
    breakout_policy: str  # "candle_extreme" or "previous_midpoint"
    exhaustion_wick_ratio: float
    exhaustion_close_enabled: bool
    db_path: str
    log_level: str
    health_port: int

    @property
    def oanda_base_url(self) -> str:
        """Return the OANDA v20 API base URL based on environment."""
        if self.oanda_environment == "live":
            return "https://api-fxtrade.oanda.com"
        return "https://api-fxpractice.oanda.com"


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent, or naming the offending variable when a
    value is out of range.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    granularity = os.environ.get("BAR_GRANULARITY", "M5")
    if granularity not in VALID_GRANULARITIES:
        raise ValueError(f"BAR_GRANULARITY must be an OANDA granularity, got '{granularity}'")

    policy = os.environ.get("BREAKOUT_POLICY", "candle_extreme").lower()
    if policy not in _BREAKOUT_POLICIES:
        raise ValueError(
            f"BREAKOUT_POLICY must be one of {', '.join(_BREAKOUT_POLICIES)}, got '{policy}'"
        )

    wick_ratio = float(os.environ.get("EXHAUSTION_WICK_RATIO", "0.4"))
    if not 0.0 < wick_ratio <= 1.0:
        raise ValueError(f"EXHAUSTION_WICK_RATIO must be in (0, 1], got {wick_ratio}")

    return Config(
        oanda_account_id=os.environ["OANDA_ACCOUNT_ID"],
        oanda_api_token=os.environ["OANDA_API_TOKEN"],
        oanda_environment=os.environ.get("OANDA_ENVIRONMENT", "practice"),
        trade_pair=os.environ.get("TRADE_PAIR", "EUR_USD"),
        bar_granularity=granularity,
        bar_count=int(os.environ.get("BAR_COUNT", "200")),
        poll_interval_seconds=int(os.environ.get("POLL_INTERVAL_SECONDS", "5")),
        start_message=os.environ.get("START_MESSAGE", "Hello world!"),
        breakout_policy=policy,
        exhaustion_wick_ratio=wick_ratio,
        exhaustion_close_enabled=_parse_bool(
            os.environ.get("EXHAUSTION_CLOSE_ENABLED", "true")
        ),
        db_path=os.environ.get("DB_PATH", "data/bombbot.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        health_port=int(os.environ.get("HEALTH_PORT", "8080")),
    )
