from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from zazzles.db.credit_store import CreditStore
from zazzles.deps import get_auto_topup_service, get_current_business, get_gateway, get_store
from zazzles.models.business import Business
from zazzles.services import billing as billing_service
from zazzles.services import businesses as business_service
from zazzles.services.auto_topup import AutoTopUpService
from zazzles.services.payment_gateway import StripeGateway

router = APIRouter()


class AutoTopUpSettingsRequest(BaseModel):
    enabled: bool | None = None
    threshold: int | None = None
    pack_id: str | None = None
    payment_method_id: str | None = None


class CheckoutRequest(BaseModel):
    pack_id: str


@router.get("/auto-topup")
async def get_auto_topup(
    business: Business = Depends(get_current_business),
    gateway: StripeGateway = Depends(get_gateway),
    auto_topup: AutoTopUpService = Depends(get_auto_topup_service),
):
    return await business_service.get_auto_topup_settings(gateway, auto_topup, business)


@router.post("/auto-topup")
async def update_auto_topup(
    body: AutoTopUpSettingsRequest,
    business: Business = Depends(get_current_business),
    store: CreditStore = Depends(get_store),
    gateway: StripeGateway = Depends(get_gateway),
):
    business = await business_service.update_auto_topup_settings(
        store,
        gateway,
        business,
        enabled=body.enabled,
        threshold=body.threshold,
        pack_id=body.pack_id,
        payment_method_id=body.payment_method_id,
    )
    return {
        "enabled": business.auto_topup_enabled,
        "threshold": business.auto_topup_threshold,
        "pack_id": business.auto_topup_pack,
    }


@router.get("/auto-topup/logs")
async def auto_topup_logs(
    business: Business = Depends(get_current_business),
    auto_topup: AutoTopUpService = Depends(get_auto_topup_service),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Auto top-up attempts for the current business (newest first)."""
    logs = await auto_topup.list_logs(business.id, limit=limit, offset=offset)
    out = [
        {
            "id": str(entry.id),
            "pack_id": entry.pack_id,
            "credits_added": entry.credits_added,
            "amount_charged": entry.amount_charged,
            "currency": entry.currency,
            "status": entry.status.value,
            "error_message": entry.error_message,
            "balance_before": entry.balance_before,
            "balance_after": entry.balance_after,
            "created_at": entry.created_at.isoformat(),
        }
        for entry in logs
    ]
    return {"logs": out, "limit": limit, "offset": offset}


@router.post("/setup-intent")
async def setup_intent(
    business: Business = Depends(get_current_business),
    store: CreditStore = Depends(get_store),
    gateway: StripeGateway = Depends(get_gateway),
):
    """Client secret for saving a card with Stripe Elements."""
    return await billing_service.create_setup_intent(store, gateway, business)


@router.get("/payment-methods")
async def payment_methods(
    business: Business = Depends(get_current_business),
    gateway: StripeGateway = Depends(get_gateway),
):
    return await billing_service.list_payment_methods(gateway, business)


@router.post("/checkout")
async def checkout(
    body: CheckoutRequest,
    business: Business = Depends(get_current_business),
    store: CreditStore = Depends(get_store),
    gateway: StripeGateway = Depends(get_gateway),
):
    """Stripe Checkout session for a one-time credit pack; the webhook applies the credits."""
    url = await billing_service.create_credit_checkout(store, gateway, business, body.pack_id)
    return {"url": url}
