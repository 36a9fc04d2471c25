"""
Perp Decision Core Configuration
"""
from pydantic_settings import BaseSettings
from pydantic import Field
from typing import List
from pathlib import Path


class Settings(BaseSettings):
    # Tradable perpetual contracts, in priority order (first wins ties)
    TRADABLE_SYMBOLS: List[str] = [
        "BTC",
        "ETH",
        "SOL",
        "BNB",
        "DOGE",
        "XRP",
    ]

    # Decision corrections
    MIN_LEVERAGE: float = 1.0
    MAX_LEVERAGE: float = 20.0

    # Replies longer than this skip the near-JSON repair pass
    PARSER_MAX_REPAIR_CHARS: int = 50000

    # Trend guard: block OPENs against a trend at least this strong
    TREND_GUARD_MIN_STRENGTH: int = 6

    # Model call retry (rate limiting only)
    MODEL_MAX_RETRIES: int = 3
    MODEL_BACKOFF_BASE_S: float = 1.0
    MODEL_BACKOFF_MAX_S: float = 30.0

    # Consecutive model/parse failures before the AI breaker trips
    AI_FAILURE_THRESHOLD: int = 3
    AI_COOLDOWN_MINUTES: float = 30.0

    # Decision audit trail (JSON lines)
    AUDIT_LOG_PATH: Path = Field(default_factory=lambda: Path(__file__).parent.parent / "data" / "decisions.jsonl")

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
