import json
import os

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Spirit of Santa API"
    backend_url: str = "http://localhost:8000"
    frontend_url: str = "http://localhost:3000"
    environment: str = "local"
    backend_cors_origins_raw: str = ""  # Comma-separated or JSON array

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "allow",
    }

    @property
    def backend_cors_origins(self) -> list[str]:
        """Parse CORS origins from raw string."""
        raw = os.getenv("BACKEND_CORS_ORIGINS", self.backend_cors_origins_raw).strip()
        if not raw:
            return ["http://localhost:3000", "http://127.0.0.1:3000"]
        if raw.startswith("["):
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        return [item.strip() for item in raw.split(",") if item.strip()]

    # Database: sqlite+aiosqlite:///./santa.db (dev) | postgresql+asyncpg://... (prod)
    postgres_dsn: str = "sqlite+aiosqlite:///./santa.db"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_recycle: int = 1800
    db_pool_timeout: int = 30

    access_token_expire_minutes: int = 60 * 24 * 7
    refresh_token_expire_minutes: int = 60 * 24 * 30
    # SECURITY: override via JWT_SECRET_KEY env var; app refuses to start with default outside local
    jwt_secret_key: str = "CHANGE_ME"
    jwt_algorithm: str = "HS256"

    # SMTP settings (optional)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from_email: str = "santa@spiritofsanta.local"
    smtp_use_tls: bool = True
    email_notifications_enabled: bool = True

    rate_limit_enabled: bool = True
    rate_limit_requests: int = 10
    rate_limit_window_seconds: int = 60
    rate_limit_login_requests: int = 5
    rate_limit_gift_requests: int = 20

    log_level: str = "INFO"
    log_file: str = ""

    # Stripe
    stripe_secret_key: str = ""
    stripe_publishable_key: str = ""
    stripe_webhook_secret: str = ""
    payments_demo_mode: bool = False
    wallet_topup_min_cents: int = 100
    wallet_topup_max_cents: int = 100_000
    donation_min_cents: int = 100

    # Magic points
    vote_min_points: int = 1
    vote_max_points: int = 100

    # Christmas season (December), evaluated in this timezone
    season_timezone: str = "UTC"
    christmas_window_start_day: int = 11
    christmas_window_end_day: int = 25

    # Default gift approval policy for parents without saved settings
    default_max_reward_gifts_per_year: int = 2
    default_max_reward_gift_price: float = 50.0
    default_require_approval_over: float = 25.0
    default_auto_approve_rewards: bool = False
    default_auto_approve_christmas: bool = True
    default_max_friend_gift_value: float = 25.0

    christmas_delivery_days: int = 3
    standard_delivery_days: int = 7

    @property
    def demo_payments(self) -> bool:
        """Fabricate payment intents when Stripe is not configured."""
        return self.payments_demo_mode or not self.stripe_secret_key


settings = Settings()
