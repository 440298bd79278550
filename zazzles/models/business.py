from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field

from zazzles.models.enums import SubscriptionStatus


class Business(Document):
    """Tenant. Auto-top-up settings are written by the billing settings endpoint."""
    name: str
    email: Indexed(str, unique=True)
    session_version: int = 0

    auto_topup_enabled: bool = False
    auto_topup_threshold: int | None = 5
    auto_topup_pack: str | None = "pack_9"
    auto_topup_claimed_until: datetime | None = None  # set while a top-up charge is in flight

    stripe_customer_id: Indexed(str) | None = None
    stripe_default_payment_method: str | None = None

    subscription_status: SubscriptionStatus = SubscriptionStatus.TRIAL
    subscription_tier: str | None = None
    subscription_ends_at: datetime | None = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "businesses"
        indexes = [[("auto_topup_enabled", 1)]]
