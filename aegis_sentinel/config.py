"""Configuration management for the Aegis Sentinel."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Price Feed ─────────────────────────────────────────────────────────────
    price_feed_url: str = Field(
        default="",
        description="Price endpoint; empty runs the static demo feed"
    )
    price_feed_format: str = Field(default="json", description="'json' or 'coingecko'")
    price_asset_id: str = Field(default="ethereum", description="CoinGecko asset id")
    price_feed_timeout_seconds: float = Field(default=10.0, description="HTTP timeout")
    max_price_age_seconds: int = Field(default=3600, description="Samples older than this are stale")
    initial_price: float = Field(default=2000.0, description="Static feed starting price")

    # ── Risk Parameters ────────────────────────────────────────────────────────
    price_threshold_pct: int = Field(default=5, description="Deviation % that counts as a spike")
    burst_window_seconds: int = Field(default=60, description="Burst counting window")
    burst_threshold: int = Field(default=5, description="Calls per window before a kind bursts")
    evaluation_interval_seconds: int = Field(default=300, description="Max time between analyses")

    # ── Keeper ─────────────────────────────────────────────────────────────────
    keeper_enabled: bool = Field(default=True, description="Run the upkeep polling loop")
    poll_interval_seconds: int = Field(default=15, description="Upkeep polling interval")

    # ── Audit ──────────────────────────────────────────────────────────────────
    event_history_size: int = Field(default=200, description="Events kept in memory")

    # ── API Server ─────────────────────────────────────────────────────────────
    admin_token: str = Field(default="", description="X-Admin-Token value; empty disables admin routes")
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8080, description="API server port")
    api_cors_origins: list[str] = Field(
        default=["*"],
        description="CORS allowed origins"
    )


settings = Settings()
