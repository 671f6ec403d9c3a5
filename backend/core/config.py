import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional

JWT_SECRET_PLACEHOLDER = "your-super-secret-jwt-key-change-this-in-production"


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Session tokens
    JWT_SECRET: Optional[str] = None
    JWT_ISSUER: str = "socialstoryai"
    JWT_EXPIRES_DAYS: int = 7

    # Platform defaults (seed the admin_settings singleton)
    FREE_STORY_LIMIT: int = 3
    PREMIUM_PRICE: float = 9.99

    # Rate limiting, per action: max attempts within window
    RATE_LIMIT_LOGIN_MAX: int = 5
    RATE_LIMIT_LOGIN_WINDOW_SECONDS: int = 15 * 60
    RATE_LIMIT_REGISTER_MAX: int = 3
    RATE_LIMIT_REGISTER_WINDOW_SECONDS: int = 60 * 60
    RATE_LIMIT_API_MAX: int = 100
    RATE_LIMIT_API_WINDOW_SECONDS: int = 60
    RATE_LIMIT_API_ENABLED: bool = False
    # Comma-separated proxy addresses whose X-Forwarded-For is believed
    RATE_LIMIT_TRUSTED_PROXIES: Optional[str] = None

    # Activity ledger
    ACTIVITY_LOG_RETENTION: int = 100

    # Video export collaborator
    VIDEO_BASE_URL: str = "https://storage.socialstoryai.com/videos"

    # CORS
    ALLOWED_ORIGINS: Optional[str] = None

    # Optional admin bootstrap
    BOOTSTRAP_ADMIN_EMAIL: Optional[str] = None
    BOOTSTRAP_ADMIN_PASSWORD: Optional[str] = None

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def allowed_origins(self) -> List[str]:
        if not self.ALLOWED_ORIGINS:
            return ["*"]
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    def trusted_proxies(self) -> List[str]:
        return [p.strip() for p in (self.RATE_LIMIT_TRUSTED_PROXIES or "").split(",") if p.strip()]


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("socialstory")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "JWT_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
