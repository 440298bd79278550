from datetime import datetime

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, IndexModel


class PromoCode(Document):
    code: Indexed(str, unique=True)  # stored upper-case
    description: str = ""
    credits: int = 5
    max_uses: int | None = None  # None = unlimited
    current_uses: int = 0
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "promo_codes"


class PromoRedemption(Document):
    promo_code_id: PydanticObjectId
    business_id: PydanticObjectId
    credits_awarded: int
    redeemed_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "promo_redemptions"
        indexes = [
            IndexModel([("promo_code_id", ASCENDING), ("business_id", ASCENDING)], unique=True),
            [("business_id", 1)],
        ]
