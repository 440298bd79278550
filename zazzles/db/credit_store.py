"""MongoDB-backed persistence for balances, ledger, top-up logs and promo codes.

Balance changes are single-document atomic updates ($inc guarded by the filter).
"""

import functools
from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from beanie.odm.operators.update.general import Inc, Set
from beanie.odm.queries.update import UpdateResponse
from beanie.operators import Or
from pymongo.errors import DuplicateKeyError, PyMongoError

from zazzles.core import audit
from zazzles.core.logging import get_logger
from zazzles.models.auto_topup_log import AutoTopUpLog
from zazzles.models.business import Business
from zazzles.models.credit_balance import CreditBalance
from zazzles.models.credit_transaction import CreditTransaction
from zazzles.models.promo_code import PromoCode, PromoRedemption
from zazzles.models.stripe_event import StripeEvent

log = get_logger(__name__)


class StoreUnavailable(Exception):
    """Underlying database read/write failed."""


class AlreadyExists(Exception):
    """Unique constraint hit (duplicate redemption, replayed webhook event)."""


def _wrap_errors(fn):
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except DuplicateKeyError as e:
            raise AlreadyExists(str(e)) from e
        except PyMongoError as e:
            log.error("store_error", op=fn.__name__, error=str(e))
            raise StoreUnavailable(str(e)) from e

    return wrapper


class CreditStore:
    # Businesses

    @_wrap_errors
    async def get_business(self, business_id: PydanticObjectId) -> Business | None:
        return await Business.get(business_id)

    @_wrap_errors
    async def get_business_by_customer(self, customer_id: str) -> Business | None:
        return await Business.find_one(Business.stripe_customer_id == customer_id)

    @_wrap_errors
    async def get_business_by_email(self, email: str) -> Business | None:
        return await Business.find_one(Business.email == email)

    @_wrap_errors
    async def insert_business(self, business: Business) -> Business:
        await business.insert()
        return business

    @_wrap_errors
    async def save_business(self, business: Business) -> Business:
        """Write profile and settings fields; the auto top-up claim is only touched by claim/release."""
        business.updated_at = datetime.utcnow()
        data = business.model_dump(exclude={"id", "revision_id", "auto_topup_claimed_until"})
        await Business.find_one(Business.id == business.id).update(Set(data))
        return business

    @_wrap_errors
    async def claim_auto_topup(self, business_id: PydanticObjectId, now: datetime, until: datetime) -> bool:
        """Set the in-flight marker unless another unexpired claim holds it."""
        claimed = await Business.find_one(
            Business.id == business_id,
            Or(Business.auto_topup_claimed_until == None, Business.auto_topup_claimed_until < now),  # noqa: E711
        ).update(
            Set({Business.auto_topup_claimed_until: until}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        return claimed is not None

    @_wrap_errors
    async def release_auto_topup(self, business_id: PydanticObjectId) -> None:
        await Business.find_one(Business.id == business_id).update(
            Set({Business.auto_topup_claimed_until: None})
        )

    @_wrap_errors
    async def auto_topup_business_ids(self, limit: int, after: PydanticObjectId | None = None) -> list[PydanticObjectId]:
        """One page of enabled businesses in _id order, starting after the given id."""
        query = Business.find(Business.auto_topup_enabled == True)  # noqa: E712
        if after is not None:
            query = query.find(Business.id > after)
        businesses = await query.sort(+Business.id).limit(limit).to_list()
        return [b.id for b in businesses]

    # Balances

    @_wrap_errors
    async def get_balance(self, business_id: PydanticObjectId) -> CreditBalance | None:
        return await CreditBalance.find_one(CreditBalance.business_id == business_id)

    @_wrap_errors
    async def create_balance(self, business_id: PydanticObjectId, credits: int) -> CreditBalance:
        balance = CreditBalance(business_id=business_id, credits_remaining=credits, period_start=datetime.utcnow())
        await balance.insert()
        return balance

    @_wrap_errors
    async def debit(self, business_id: PydanticObjectId, amount: int) -> CreditBalance | None:
        """Decrement only if enough credits remain; None when no document matched."""
        return await CreditBalance.find_one(
            CreditBalance.business_id == business_id,
            CreditBalance.credits_remaining >= amount,
        ).update(
            Inc({CreditBalance.credits_remaining: -amount, CreditBalance.credits_used: amount}),
            Set({CreditBalance.updated_at: datetime.utcnow()}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )

    @_wrap_errors
    async def undo_debit(self, business_id: PydanticObjectId, amount: int) -> None:
        await CreditBalance.find_one(CreditBalance.business_id == business_id).update(
            Inc({CreditBalance.credits_remaining: amount, CreditBalance.credits_used: -amount}),
        )

    @_wrap_errors
    async def credit(self, business_id: PydanticObjectId, amount: int, purchased: bool = False) -> CreditBalance | None:
        inc = {CreditBalance.credits_remaining: amount}
        if purchased:
            inc[CreditBalance.credits_purchased] = amount
        return await CreditBalance.find_one(CreditBalance.business_id == business_id).update(
            Inc(inc),
            Set({CreditBalance.updated_at: datetime.utcnow()}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )

    @_wrap_errors
    async def reset_period(self, business_id: PydanticObjectId, plan_credits: int) -> CreditBalance | None:
        """New billing period: remaining = plan credits + purchased credits, used = 0."""
        now = datetime.utcnow()
        result = await CreditBalance.get_motor_collection().update_one(
            {"business_id": business_id},
            [
                {
                    "$set": {
                        "credits_remaining": {"$add": [plan_credits, {"$ifNull": ["$credits_purchased", 0]}]},
                        "credits_used": 0,
                        "period_start": now,
                        "updated_at": now,
                    }
                }
            ],
        )
        if result.matched_count == 0:
            return None
        return await CreditBalance.find_one(CreditBalance.business_id == business_id)

    # Ledger

    @_wrap_errors
    async def append_transaction(self, entry: CreditTransaction) -> CreditTransaction:
        await entry.insert()
        return entry

    @_wrap_errors
    async def list_transactions(self, business_id: PydanticObjectId, limit: int, offset: int) -> list[CreditTransaction]:
        return (
            await CreditTransaction.find(CreditTransaction.business_id == business_id)
            .sort(-CreditTransaction.created_at)
            .skip(offset)
            .limit(limit)
            .to_list()
        )

    @_wrap_errors
    async def has_payment_transaction(self, stripe_payment_id: str) -> bool:
        existing = await CreditTransaction.find_one(CreditTransaction.stripe_payment_id == stripe_payment_id)
        return existing is not None

    @_wrap_errors
    async def append_topup_log(self, entry: AutoTopUpLog) -> AutoTopUpLog:
        await entry.insert()
        return entry

    @_wrap_errors
    async def list_topup_logs(self, business_id: PydanticObjectId, limit: int, offset: int) -> list[AutoTopUpLog]:
        return (
            await AutoTopUpLog.find(AutoTopUpLog.business_id == business_id)
            .sort(-AutoTopUpLog.created_at)
            .skip(offset)
            .limit(limit)
            .to_list()
        )

    async def log_event(
        self,
        business_id: PydanticObjectId | None,
        event_type: str,
        entity_type: str,
        entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Best effort: audit failures are logged, never raised."""
        try:
            await audit.log_event(str(business_id) if business_id else None, event_type, entity_type, entity_id, metadata)
        except PyMongoError as e:
            log.warning("audit_log_failed", event_type=event_type, error=str(e))

    # Webhook replay protection

    @_wrap_errors
    async def record_stripe_event(self, event_id: str, event_type: str) -> None:
        """Raises AlreadyExists when this event id was processed before."""
        await StripeEvent(event_id=event_id, event_type=event_type).insert()

    @_wrap_errors
    async def forget_stripe_event(self, event_id: str) -> None:
        await StripeEvent.find(StripeEvent.event_id == event_id).delete()

    # Promo codes

    @_wrap_errors
    async def get_promo_code(self, code: str) -> PromoCode | None:
        return await PromoCode.find_one(PromoCode.code == code, PromoCode.is_active == True)  # noqa: E712

    @_wrap_errors
    async def claim_promo_use(self, promo_id: PydanticObjectId) -> bool:
        """Increment current_uses unless the limit is reached."""
        updated = await PromoCode.find_one(
            {
                "_id": promo_id,
                "is_active": True,
                "$or": [
                    {"max_uses": None},
                    {"$expr": {"$lt": ["$current_uses", "$max_uses"]}},
                ],
            }
        ).update(Inc({PromoCode.current_uses: 1}), response_type=UpdateResponse.NEW_DOCUMENT)
        return updated is not None

    @_wrap_errors
    async def release_promo_use(self, promo_id: PydanticObjectId) -> None:
        await PromoCode.find_one(PromoCode.id == promo_id).update(Inc({PromoCode.current_uses: -1}))

    @_wrap_errors
    async def add_redemption(self, redemption: PromoRedemption) -> PromoRedemption:
        """Raises AlreadyExists when the business already redeemed this code."""
        await redemption.insert()
        return redemption

    @_wrap_errors
    async def has_redeemed(self, promo_id: PydanticObjectId, business_id: PydanticObjectId) -> bool:
        existing = await PromoRedemption.find_one(
            PromoRedemption.promo_code_id == promo_id,
            PromoRedemption.business_id == business_id,
        )
        return existing is not None

    @_wrap_errors
    async def remove_redemption(self, redemption: PromoRedemption) -> None:
        await redemption.delete()
