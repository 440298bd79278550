from fastapi import APIRouter, Depends, Header, Request

from zazzles.deps import get_webhook_handler
from zazzles.services.billing import StripeWebhookHandler

router = APIRouter()


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(..., alias="Stripe-Signature"),
    handler: StripeWebhookHandler = Depends(get_webhook_handler),
):
    """Stripe webhook: signature-verified, each event id processed once."""
    body = await request.body()
    outcome = await handler.handle(body, stripe_signature)
    return {"received": True, "outcome": outcome}
