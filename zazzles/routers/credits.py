from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from zazzles.core.exceptions import NotFoundError
from zazzles.deps import get_credit_service, get_current_business
from zazzles.models.business import Business
from zazzles.services.catalog import list_packs
from zazzles.services.credits import CreditService

router = APIRouter()


class DeductRequest(BaseModel):
    amount: int = Field(1, description="Credits to consume; must be positive")
    description: str = "Image generation"
    image_id: str | None = None


@router.get("/balance")
async def credits_balance(
    business: Business = Depends(get_current_business),
    credits: CreditService = Depends(get_credit_service),
):
    """Return current credit balance."""
    balance = await credits.get_balance(business.id)
    if balance is None:
        raise NotFoundError("Credits not found")
    return {
        "credits_remaining": balance.credits_remaining,
        "credits_used": balance.credits_used,
        "credits_purchased": balance.credits_purchased,
        "period_start": balance.period_start.isoformat() if balance.period_start else None,
    }


@router.get("/transactions")
async def credits_transactions(
    business: Business = Depends(get_current_business),
    credits: CreditService = Depends(get_credit_service),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Return ledger entries for the current business (newest first)."""
    entries = await credits.list_transactions(business.id, limit=limit, offset=offset)
    out = [
        {
            "id": str(t.id),
            "amount": t.amount,
            "transaction_type": t.transaction_type.value,
            "description": t.description,
            "image_id": t.image_id,
            "stripe_payment_id": t.stripe_payment_id,
            "balance_after": t.balance_after,
            "created_at": t.created_at.isoformat(),
        }
        for t in entries
    ]
    return {"transactions": out, "limit": limit, "offset": offset}


@router.get("/packs")
async def credits_packs():
    return {"packs": list_packs()}


@router.post("/deduct")
async def credits_deduct(
    body: DeductRequest,
    business: Business = Depends(get_current_business),
    credits: CreditService = Depends(get_credit_service),
):
    """Consume credits after a generation; 402 when the balance is too low."""
    new_balance = (await credits.deduct(business.id, body.amount, body.description, body.image_id)).unwrap()
    return {"credits_remaining": new_balance}


@router.get("/check")
async def credits_check(
    amount: int = Query(1, ge=1),
    business: Business = Depends(get_current_business),
    credits: CreditService = Depends(get_credit_service),
):
    """Pre-flight before an AI operation; 402 when the balance cannot cover it. Reserves nothing."""
    remaining = (await credits.check_available(business.id, amount)).unwrap()
    return {"available": True, "credits_remaining": remaining}
