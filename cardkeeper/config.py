from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "cardkeeper"
    debug: bool = False

    # Authoritative collection backend
    api_base_url: str = "http://localhost:5000"
    request_timeout_seconds: float = 10.0

    # Forwarded as the backend session cookie; login happens elsewhere
    session_cookie: str = ""

    # Reconciliation polling, runs whether or not a mutation is pending
    poll_interval_seconds: float = 30.0

    # Per-key debounce after a mutation settles
    mutation_cooldown_seconds: float = 1.0

    notification_feed_size: int = 50


settings = Settings()


# =============================================================================
# NOTIFICATION DISPLAY DURATIONS (seconds)
# =============================================================================

SUCCESS_NOTIFICATION_SECONDS = 2.0
ERROR_NOTIFICATION_SECONDS = 3.0

# Name of the cookie the backend uses for its login session
SESSION_COOKIE_NAME = "connect.sid"
