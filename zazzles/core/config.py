from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000"]


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except Exception:
        return _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")
    app_url: str = Field(default="http://localhost:3000", alias="APP_URL")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="zazzles", alias="MONGODB_DB_NAME")
    db_init_on_startup: bool = Field(default=True, alias="DB_INIT_ON_STARTUP")

    # Redis (arq worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Stripe
    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")
    stripe_currency: str = Field(default="usd", alias="STRIPE_CURRENCY")
    stripe_charge_timeout_seconds: float = Field(default=20.0, alias="STRIPE_CHARGE_TIMEOUT_SECONDS")

    # Stripe price ids: one-time credit packs
    stripe_pack_4_price_id: str = Field(default="", alias="STRIPE_PACK_4_PRICE_ID")
    stripe_pack_9_price_id: str = Field(default="", alias="STRIPE_PACK_9_PRICE_ID")
    stripe_pack_23_price_id: str = Field(default="", alias="STRIPE_PACK_23_PRICE_ID")
    stripe_pack_48_price_id: str = Field(default="", alias="STRIPE_PACK_48_PRICE_ID")

    # Stripe price ids: subscription plans
    stripe_lite_price_id: str = Field(default="", alias="STRIPE_LITE_PRICE_ID")
    stripe_starter_price_id: str = Field(default="", alias="STRIPE_STARTER_PRICE_ID")
    stripe_pro_price_id: str = Field(default="", alias="STRIPE_PRO_PRICE_ID")
    stripe_business_price_id: str = Field(default="", alias="STRIPE_BUSINESS_PRICE_ID")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    # Credits
    trial_credits: int = Field(default=30, alias="TRIAL_CREDITS")
    auto_topup_default_threshold: int = Field(default=5, alias="AUTO_TOPUP_DEFAULT_THRESHOLD")
    auto_topup_default_pack: str = Field(default="pack_9", alias="AUTO_TOPUP_DEFAULT_PACK")
    auto_topup_claim_seconds: int = Field(default=120, alias="AUTO_TOPUP_CLAIM_SECONDS")
    auto_topup_sweep_batch: int = Field(default=100, alias="AUTO_TOPUP_SWEEP_BATCH")


@lru_cache
def get_settings() -> Settings:
    return Settings()
