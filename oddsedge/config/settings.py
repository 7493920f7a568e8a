"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env file.
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TickSettings(BaseSettings):
    """Settings for the detection tick and delivery cadence."""

    model_config = SettingsConfigDict(env_prefix="TICK_")

    interval_seconds: float = Field(
        default=2.0,
        description="Seconds between detection ticks (pro/live delivery cadence)",
    )
    slow_delivery_interval_seconds: float = Field(
        default=15.0,
        description="Minimum seconds between deliveries for free or pregame subscriptions",
    )
    keepalive_seconds: float = Field(
        default=15.0,
        description="Seconds between SSE keepalive comments",
    )
    max_quote_age_seconds: int = Field(
        default=300,
        description="Quotes older than this are excluded from the tick snapshot",
    )


class ArbitrageSettings(BaseSettings):
    """Settings for arbitrage detection."""

    model_config = SettingsConfigDict(env_prefix="ARB_")

    min_roi_bps: float = Field(
        default=0.0,
        description="Minimum ROI in basis points to report an arbitrage",
    )
    include_same_book: bool = Field(
        default=True,
        description="Report arbs whose best prices both come from one sportsbook",
    )
    excluded_bookmakers: list[str] = Field(
        default_factory=list,
        description="Bookmakers to exclude from arbitrage scanning",
    )


class ValueDetectionSettings(BaseSettings):
    """Default EV model used when a caller has no model of their own."""

    model_config = SettingsConfigDict(env_prefix="EV_")

    sharp_books: list[str] = Field(
        default=["pinnacle", "circa"],
        description="Reference books whose prices define the fair probability",
    )
    min_books_reference: int = Field(
        default=2,
        description="Minimum number of reference books needed for a consensus",
    )
    max_reference_spread: float = Field(
        default=0.05,
        description="Maximum spread between reference implied probabilities",
    )
    min_ev_bps: float = Field(
        default=0.0,
        description="EV must exceed this many basis points to qualify",
    )
    devig_method: str = Field(
        default="none",
        description="How reference lines are de-vigged: none or multiplicative",
    )

    @field_validator("devig_method")
    @classmethod
    def validate_devig_method(cls, v: str) -> str:
        allowed = ["none", "multiplicative"]
        if v not in allowed:
            raise ValueError(f"devig_method must be one of {allowed}")
        return v


class EntitlementSettings(BaseSettings):
    """Settings for entitlement resolution."""

    model_config = SettingsConfigDict(env_prefix="ENTITLEMENT_")

    cache_ttl_seconds: float = Field(
        default=30.0,
        description="How long a resolved plan may be reused before re-checking",
    )


class OddsAPISettings(BaseSettings):
    """Settings for The Odds API poll feed."""

    model_config = SettingsConfigDict(env_prefix="ODDS_")

    api_key: str = Field(
        default="",
        description="API key from the-odds-api.com",
    )
    base_url: str = Field(
        default="https://api.the-odds-api.com/v4",
        description="Base URL for the API",
    )
    sports: list[str] = Field(
        default=[
            "americanfootball_nfl",
            "basketball_nba",
            "baseball_mlb",
            "icehockey_nhl",
        ],
        description="Sport keys to poll",
    )
    regions: list[str] = Field(
        default=["us", "us2", "eu"],
        description="Regions to fetch odds from",
    )
    markets: list[str] = Field(
        default=["h2h", "spreads", "totals"],
        description="Markets to fetch",
    )
    bookmakers: list[str] = Field(
        default_factory=list,
        description="Bookmakers to fetch (empty = all in the requested regions)",
    )
    poll_interval_seconds: int = Field(
        default=60,
        description="Seconds between odds polls",
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Database holding the externally written tables
    database_url: str = Field(
        default="sqlite:///oddsedge.db",
        description="Database connection URL",
    )

    # Push ingestion
    ingest_api_key: Optional[str] = Field(
        default=None,
        description="Shared secret required by POST /api/ingest/quotes",
    )

    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="Origins allowed by the CORS middleware",
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)
    debug: bool = Field(default=False)

    # Sub-settings
    tick: TickSettings = Field(default_factory=TickSettings)
    arbitrage: ArbitrageSettings = Field(default_factory=ArbitrageSettings)
    value_detection: ValueDetectionSettings = Field(
        default_factory=ValueDetectionSettings
    )
    entitlements: EntitlementSettings = Field(default_factory=EntitlementSettings)
    odds_api: OddsAPISettings = Field(default_factory=OddsAPISettings)

    @property
    def project_root(self) -> Path:
        """Get project root directory."""
        return Path(__file__).parent.parent.parent


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
