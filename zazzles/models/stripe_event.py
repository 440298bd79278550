from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class StripeEvent(Document):
    """Processed Stripe webhook event ids; replays hit the unique index."""
    event_id: Indexed(str, unique=True)
    event_type: str
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "stripe_events"
