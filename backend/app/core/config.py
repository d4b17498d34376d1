"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Framework Compare Backend"
    debug: bool = False
    api_version: str = "v1"
    log_level: str = ""                  # Defaults to DEBUG when debug, else INFO
    third_party_log_level: str = "WARNING"  # httpx, aiohttp and friends

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""  # anon key for client operations
    supabase_service_key: str = ""  # service role key for backend operations
    storage_bucket: str = "frameworks"
    supabase_timeout_seconds: float = 30.0
    supabase_http_retries: int = 3       # Transport-level retries on connect errors

    # JWT (tokens are issued by the auth service, validated locally)
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"

    # ==========================================================================
    # AI Service
    # ==========================================================================
    ai_base_url: str = ""                       # e.g. http://ai-service:8001
    ai_ws_base_url: str = ""                    # derived from ai_base_url when empty
    ai_request_timeout: float = 30.0            # Seconds for upload / status calls
    ai_connect_timeout: float = 10.0
    ai_user_path_prefix: str = "/user"          # Path prefix for user framework jobs
    ai_expert_path_prefix: str = "/expert"      # Path prefix for expert framework jobs
    ai_compare_path: str = "/compare"           # Comparison stream endpoint

    # Job monitors (AI-side WebSockets)
    monitor_heartbeat_seconds: float = 30.0
    monitor_shutdown_timeout: float = 5.0       # Max seconds close_all may take

    # ==========================================================================
    # Reconciliation (missed completion recovery)
    # ==========================================================================
    reconciliation_enabled: bool = True
    reconciliation_interval_seconds: float = 30.0
    reconciliation_stale_minutes: int = 5       # processed_at older than this is stale
    reconciliation_batch_limit: int = 100       # Max records per kind per sweep

    # Uploads
    upload_max_mb: int = 50
    upload_allowed_extensions: list[str] = ["pdf", "doc", "docx", "xls", "xlsx"]

    # Comparison
    comparison_score_field: str = "Comparison_Score"

    # CORS
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:5174"]

    # Rate Limiting
    rate_limit_default: int = 100        # requests per minute
    rate_limit_status_check: int = 60    # on-demand AI status checks
    rate_limit_health: int = 300

    # WebSocket (notification sockets)
    websocket_ping_interval: int = 30    # Seconds of silence before a server ping

    @property
    def is_configured(self) -> bool:
        """Check if essential configuration is present."""
        return bool(self.supabase_url and (self.supabase_service_key or self.supabase_key))

    @property
    def is_ai_configured(self) -> bool:
        """Check if the AI service base URL is configured."""
        return bool(self.ai_base_url)

    @property
    def resolved_ai_ws_base_url(self) -> str:
        """WebSocket base URL for the AI service.

        Falls back to the HTTP base URL with its scheme swapped
        (http -> ws, https -> wss).
        """
        if self.ai_ws_base_url:
            return self.ai_ws_base_url.rstrip("/")
        return self.ai_base_url.rstrip("/").replace("http", "ws", 1)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
