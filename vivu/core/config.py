import logging
from typing import List, Optional

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Auth
    JWT_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRES_SECONDS: int = 7 * 24 * 3600
    ADMIN_KEY: Optional[str] = None
    ALLOW_HEADER_AUTH: bool = True  # X-User-Id fallback (dev/tests)

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    PAYMENT_CURRENCY: str = "vnd"

    # App URLs
    CLIENT_URL: str = "http://localhost:3000"

    # Subscription engine
    TRIAL_DISPLAY_HOURS: int = 24  # informational end_date on new trial accounts
    REDEMPTION_MAX_RETRIES: int = 2
    EXPIRING_SOON_DAYS: int = 7

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"


settings = Settings()

REQUIRED_KEYS = ("DATABASE_URL", "JWT_SECRET", "ADMIN_KEY", "STRIPE_SECRET_KEY")


def config_problems(cfg: Settings) -> List[str]:
    """Human-readable configuration problems. Never includes secret values."""
    problems = []
    missing = [key for key in REQUIRED_KEYS if not getattr(cfg, key, None)]
    if missing:
        problems.append(f"Missing required configuration: {', '.join(missing)}")
    if cfg.STRIPE_SECRET_KEY and not cfg.STRIPE_WEBHOOK_SECRET:
        problems.append("STRIPE_WEBHOOK_SECRET is required to accept payment webhooks")
    if cfg.is_production and cfg.ALLOW_HEADER_AUTH:
        problems.append("ALLOW_HEADER_AUTH must be disabled in production")
    if cfg.REDEMPTION_MAX_RETRIES < 0:
        problems.append("REDEMPTION_MAX_RETRIES must be >= 0")
    return problems


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Check configuration at startup.

    Strict mode raises RuntimeError on the first report; otherwise each
    problem is logged as a warning.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("vivu")
    strict_mode = cfg.CONFIG_STRICT if strict is None else strict

    problems = config_problems(cfg)
    if problems and strict_mode:
        raise RuntimeError("; ".join(problems))
    for problem in problems:
        log.warning(problem)
    return not problems
