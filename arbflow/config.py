"""
Configuration settings for the arbitrage scanner.
Uses pydantic-settings for validation and environment variable loading.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OddsAPISettings(BaseSettings):
    """The Odds API connection settings (ODDS_ prefix)."""

    model_config = SettingsConfigDict(env_prefix="ODDS_", env_file=".env", extra="ignore")

    api_key: str = Field(default="", description="The Odds API key")
    base_url: str = "https://api.the-odds-api.com/v4"

    regions: str = "us"
    markets: str = "h2h,spreads,totals"
    odds_format: str = "american"

    # Comma-separated Odds API sport keys
    sports: str = (
        "basketball_nba,americanfootball_nfl,icehockey_nhl,baseball_mlb,"
        "soccer_usa_mls,basketball_ncaab,americanfootball_ncaaf"
    )

    # Pacing between sports (quota friendly)
    request_delay_seconds: float = 1.0
    timeout_seconds: float = 10.0

    @property
    def sport_keys(self) -> list[str]:
        """Configured sports as a list."""
        return [s.strip() for s in self.sports.split(",") if s.strip()]


class ScannerSettings(BaseSettings):
    """Scan loop settings (SCAN_ prefix)."""

    model_config = SettingsConfigDict(env_prefix="SCAN_", env_file=".env", extra="ignore")

    interval_seconds: float = 60.0
    warmup_seconds: float = 5.0

    # Opportunities below this ROI (%) are treated as noise
    min_roi: float = 1.0

    # How long an opportunity is considered live after detection
    opportunity_ttl_seconds: float = 600.0

    # Max wait for an in-flight cycle on shutdown
    shutdown_timeout_seconds: float = 30.0

    @field_validator("interval_seconds")
    @classmethod
    def _positive_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("interval_seconds must be positive")
        return v


class RealtimeSettings(BaseSettings):
    """Websocket hub settings (REALTIME_ prefix)."""

    model_config = SettingsConfigDict(env_prefix="REALTIME_", env_file=".env", extra="ignore")

    host: str = "0.0.0.0"
    port: int = 8765

    heartbeat_interval_seconds: float = 30.0
    outbox_size: int = 256
    auth_timeout_seconds: float = 5.0


class JWTSettings(BaseSettings):
    """Bearer token verification (JWT_ prefix)."""

    model_config = SettingsConfigDict(env_prefix="JWT_", env_file=".env", extra="ignore")

    secret: str = Field(default="", description="HMAC secret shared with the auth service")
    algorithm: str = "HS256"
    user_id_claim: str = "userId"


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Database
    database_url: str = "sqlite+aiosqlite:///./arbflow.db"

    # Sub-settings
    odds_api: OddsAPISettings = Field(default_factory=OddsAPISettings)
    scanner: ScannerSettings = Field(default_factory=ScannerSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    jwt: JWTSettings = Field(default_factory=JWTSettings)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Load settings once per process."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global _settings
    _settings = Settings()
    return _settings
