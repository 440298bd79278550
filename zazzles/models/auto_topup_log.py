from datetime import datetime

from beanie import Document, PydanticObjectId
from pydantic import Field

from zazzles.models.enums import TopUpStatus


class AutoTopUpLog(Document):
    """One entry per attempted auto-charge, failed attempts included."""
    business_id: PydanticObjectId
    pack_id: str
    credits_added: int
    amount_charged: float
    currency: str = "usd"
    stripe_payment_intent_id: str | None = None
    stripe_charge_id: str | None = None
    status: TopUpStatus
    error_message: str | None = None
    balance_before: int
    balance_after: int
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "auto_topup_logs"
        indexes = [[("business_id", 1), ("created_at", -1)]]
