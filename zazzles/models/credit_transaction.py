from datetime import datetime

from beanie import Document, PydanticObjectId
from pydantic import Field

from zazzles.models.enums import TransactionType


class CreditTransaction(Document):
    """Immutable ledger entry; written once per balance change."""
    business_id: PydanticObjectId
    amount: int  # positive = credit, negative = debit
    transaction_type: TransactionType
    description: str = ""
    image_id: str | None = None
    stripe_payment_id: str | None = None
    balance_after: int
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_transactions"
        indexes = [
            [("business_id", 1), ("created_at", -1)],
            [("stripe_payment_id", 1)],
        ]
