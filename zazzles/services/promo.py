"""Promo code redemption: one use per business, global use limit, credits granted as promo_credit."""

from datetime import datetime

from beanie import PydanticObjectId

from zazzles.core.exceptions import BadRequestError, ConflictError, NotFoundError
from zazzles.core.logging import get_logger
from zazzles.core.result import to_app_error
from zazzles.db.credit_store import AlreadyExists, CreditStore, StoreUnavailable
from zazzles.models.enums import TransactionType
from zazzles.models.promo_code import PromoRedemption
from zazzles.services.credits import CreditService

log = get_logger(__name__)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


async def redeem(store: CreditStore, credits: CreditService, business_id: PydanticObjectId, code: str) -> dict:
    """Redeem `code` for the business. Raises AppError on every rejection."""
    code = normalize_code(code)
    if not code:
        raise BadRequestError("Promo code required")
    promo = await store.get_promo_code(code)
    if promo is None:
        raise NotFoundError("Invalid promo code")
    now = datetime.utcnow()
    if promo.starts_at and promo.starts_at > now:
        raise BadRequestError("Promo code is not active yet")
    if promo.expires_at and promo.expires_at < now:
        raise BadRequestError("Promo code has expired")
    if await store.has_redeemed(promo.id, business_id):
        raise ConflictError("Promo code already redeemed")
    if not await store.claim_promo_use(promo.id):
        raise BadRequestError("Promo code usage limit reached")

    redemption = PromoRedemption(promo_code_id=promo.id, business_id=business_id, credits_awarded=promo.credits)
    try:
        await store.add_redemption(redemption)
    except AlreadyExists:
        await _release_use(store, promo.id)
        raise ConflictError("Promo code already redeemed")

    result = await credits.grant(
        business_id,
        promo.credits,
        TransactionType.PROMO_CREDIT,
        f"Promo code {promo.code}: {promo.credits} credits",
    )
    if not result.ok:
        try:
            await store.remove_redemption(redemption)
        except StoreUnavailable:
            log.error("promo_rollback_failed", business_id=str(business_id), code=promo.code)
        await _release_use(store, promo.id)
        raise to_app_error(result)

    await store.log_event(business_id, "promo_redeemed", "promo_code", str(promo.id), {"code": promo.code, "credits": promo.credits})
    log.info("promo_redeemed", business_id=str(business_id), code=promo.code, credits=promo.credits)
    return {"code": promo.code, "credits_added": promo.credits, "credits_remaining": result.value}


async def _release_use(store: CreditStore, promo_id: PydanticObjectId) -> None:
    try:
        await store.release_promo_use(promo_id)
    except StoreUnavailable:
        log.error("promo_release_failed", promo_id=str(promo_id))
