from fastapi import APIRouter, Depends
from pydantic import BaseModel

from zazzles.db.credit_store import CreditStore
from zazzles.deps import get_credit_service, get_current_business, get_store
from zazzles.models.business import Business
from zazzles.services import promo as promo_service
from zazzles.services.credits import CreditService

router = APIRouter()


class RedeemRequest(BaseModel):
    code: str


@router.post("/redeem")
async def redeem_promo(
    body: RedeemRequest,
    business: Business = Depends(get_current_business),
    store: CreditStore = Depends(get_store),
    credits: CreditService = Depends(get_credit_service),
):
    return await promo_service.redeem(store, credits, business.id, body.code)
