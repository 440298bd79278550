from datetime import datetime

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, IndexModel


class CreditBalance(Document):
    """Current balance per business; only ever changed through atomic $inc updates."""
    business_id: PydanticObjectId
    credits_remaining: int = 0
    credits_used: int = 0
    credits_purchased: int = 0
    period_start: datetime | None = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credits"
        indexes = [IndexModel([("business_id", ASCENDING)], unique=True)]
