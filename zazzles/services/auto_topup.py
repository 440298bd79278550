"""Auto top-up: charge the stored card for a credit pack when the balance runs low.

Called after every successful deduction and by the periodic sweep job. Every
charge attempt writes exactly one AutoTopUpLog, failed attempts included; only
a succeeded charge credits the balance and writes a purchase transaction.
"""

from datetime import datetime, timedelta

from beanie import PydanticObjectId

from zazzles.core.config import get_settings
from zazzles.core.logging import get_logger
from zazzles.core.result import ErrorKind, Result
from zazzles.db.credit_store import CreditStore, StoreUnavailable
from zazzles.models.auto_topup_log import AutoTopUpLog
from zazzles.models.business import Business
from zazzles.models.credit_balance import CreditBalance
from zazzles.models.credit_transaction import CreditTransaction
from zazzles.models.enums import TopUpStatus, TransactionType
from zazzles.services.catalog import CreditPack, get_pack
from zazzles.services.payment_gateway import ChargeOutcome, ChargeStatus, StripeGateway

log = get_logger(__name__)


class AutoTopUpService:
    def __init__(
        self,
        store: CreditStore,
        gateway: StripeGateway,
        default_threshold: int | None = None,
        default_pack: str | None = None,
        claim_seconds: int | None = None,
    ):
        settings = get_settings()
        self.store = store
        self.gateway = gateway
        self.default_threshold = default_threshold if default_threshold is not None else settings.auto_topup_default_threshold
        self.default_pack = default_pack or settings.auto_topup_default_pack
        self.claim_seconds = claim_seconds if claim_seconds is not None else settings.auto_topup_claim_seconds

    def threshold_for(self, business: Business) -> int:
        return business.auto_topup_threshold or self.default_threshold

    def pack_id_for(self, business: Business) -> str:
        return business.auto_topup_pack or self.default_pack

    async def run(self, business_id: PydanticObjectId) -> Result[int]:
        """Value is the number of credits added (0 when nothing was needed)."""
        try:
            return await self._run(business_id)
        except StoreUnavailable:
            return Result.failure(ErrorKind.STORE_UNAVAILABLE, "Auto top-up failed: store unavailable")

    async def _run(self, business_id: PydanticObjectId) -> Result[int]:
        business = await self.store.get_business(business_id)
        if business is None:
            return Result.failure(ErrorKind.BUSINESS_NOT_FOUND, "Business not found")
        if not business.auto_topup_enabled:
            return Result.success(0)
        if not business.stripe_customer_id or not business.stripe_default_payment_method:
            log.warning("auto_topup_no_payment_method", business_id=str(business_id))
            return Result.failure(ErrorKind.CONFIGURATION_ERROR, "No payment method configured")

        balance = await self.store.get_balance(business_id)
        if balance is None:
            return Result.failure(ErrorKind.BUSINESS_NOT_FOUND, "Credits not found")
        threshold = self.threshold_for(business)
        if balance.credits_remaining >= threshold:
            return Result.success(0, balance=balance.credits_remaining)

        pack_id = self.pack_id_for(business)
        pack = get_pack(pack_id)
        if pack is None:
            log.error("auto_topup_invalid_pack", business_id=str(business_id), pack_id=pack_id)
            return Result.failure(ErrorKind.INVALID_PACK, "Invalid credit pack configured", balance=balance.credits_remaining)

        now = datetime.utcnow()
        if not await self.store.claim_auto_topup(business_id, now, now + timedelta(seconds=self.claim_seconds)):
            log.info("auto_topup_in_progress", business_id=str(business_id))
            return Result.success(0, balance=balance.credits_remaining)
        try:
            # Re-read under the claim: a top-up that just finished may have refilled the balance.
            balance = await self.store.get_balance(business_id)
            if balance is None:
                return Result.failure(ErrorKind.BUSINESS_NOT_FOUND, "Credits not found")
            if balance.credits_remaining >= threshold:
                return Result.success(0, balance=balance.credits_remaining)
            log.info(
                "auto_topup_triggered",
                business_id=str(business_id),
                credits_remaining=balance.credits_remaining,
                threshold=threshold,
                pack_id=pack.id,
            )
            outcome = await self.gateway.charge_off_session(
                customer_id=business.stripe_customer_id,
                payment_method_id=business.stripe_default_payment_method,
                amount_cents=pack.amount_cents,
                metadata={
                    "business_id": str(business_id),
                    "pack_id": pack.id,
                    "credits": str(pack.credits),
                    "type": "auto_topup",
                },
                idempotency_key=topup_idempotency_key(business, balance),
            )
            if not outcome.succeeded:
                return await self._record_failure(business_id, pack, balance, outcome)
            return await self._record_success(business_id, pack, balance, outcome)
        finally:
            await self._release(business_id)

    async def _release(self, business_id: PydanticObjectId) -> None:
        try:
            await self.store.release_auto_topup(business_id)
        except StoreUnavailable:
            log.warning("auto_topup_release_failed", business_id=str(business_id))

    async def _record_failure(
        self,
        business_id: PydanticObjectId,
        pack: CreditPack,
        balance: CreditBalance,
        outcome: ChargeOutcome,
    ) -> Result[int]:
        await self.store.append_topup_log(
            AutoTopUpLog(
                business_id=business_id,
                pack_id=pack.id,
                credits_added=0,
                amount_charged=pack.price,
                currency=self.gateway.currency,
                stripe_payment_intent_id=outcome.payment_intent_id,
                status=TopUpStatus.FAILED,
                error_message=outcome.detail,
                balance_before=balance.credits_remaining,
                balance_after=balance.credits_remaining,
            )
        )
        await self.store.log_event(
            business_id, "auto_topup_failed", "auto_topup", outcome.payment_intent_id, {"pack_id": pack.id, "detail": outcome.detail}
        )
        log.warning(
            "auto_topup_failed",
            business_id=str(business_id),
            pack_id=pack.id,
            charge_status=outcome.status.value,
            detail=outcome.detail,
        )
        kind = ErrorKind.PAYMENT_DECLINED if outcome.status == ChargeStatus.DECLINED else ErrorKind.PAYMENT_FAILED
        return Result.failure(kind, outcome.detail, balance=balance.credits_remaining)

    async def _record_success(
        self,
        business_id: PydanticObjectId,
        pack: CreditPack,
        balance: CreditBalance,
        outcome: ChargeOutcome,
    ) -> Result[int]:
        try:
            updated = await self.store.credit(business_id, pack.credits, purchased=True)
            if updated is None:
                raise StoreUnavailable("credit balance missing")
        except StoreUnavailable:
            # Card was charged but credits were not applied; needs manual reconciliation.
            log.critical(
                "auto_topup_credit_failed",
                business_id=str(business_id),
                pack_id=pack.id,
                payment_intent_id=outcome.payment_intent_id,
            )
            await self.store.append_topup_log(
                AutoTopUpLog(
                    business_id=business_id,
                    pack_id=pack.id,
                    credits_added=0,
                    amount_charged=pack.price,
                    currency=self.gateway.currency,
                    stripe_payment_intent_id=outcome.payment_intent_id,
                    stripe_charge_id=outcome.charge_id,
                    status=TopUpStatus.FAILED,
                    error_message="Charged but credits not applied",
                    balance_before=balance.credits_remaining,
                    balance_after=balance.credits_remaining,
                )
            )
            return Result.failure(ErrorKind.STORE_UNAVAILABLE, "Charged but credits not applied", balance=balance.credits_remaining)
        # Charge and credits are both applied from here; write failures are flagged for reconciliation.
        try:
            await self.store.append_transaction(
                CreditTransaction(
                    business_id=business_id,
                    amount=pack.credits,
                    transaction_type=TransactionType.PURCHASE,
                    description=f"Auto top-up: {pack.credits} credits",
                    stripe_payment_id=outcome.payment_intent_id,
                    balance_after=updated.credits_remaining,
                )
            )
        except StoreUnavailable:
            log.critical(
                "auto_topup_transaction_missing",
                business_id=str(business_id),
                pack_id=pack.id,
                payment_intent_id=outcome.payment_intent_id,
            )
        try:
            await self.store.append_topup_log(
                AutoTopUpLog(
                    business_id=business_id,
                    pack_id=pack.id,
                    credits_added=pack.credits,
                    amount_charged=pack.price,
                    currency=self.gateway.currency,
                    stripe_payment_intent_id=outcome.payment_intent_id,
                    stripe_charge_id=outcome.charge_id,
                    status=TopUpStatus.SUCCEEDED,
                    balance_before=balance.credits_remaining,
                    balance_after=updated.credits_remaining,
                )
            )
        except StoreUnavailable:
            log.critical(
                "auto_topup_log_missing",
                business_id=str(business_id),
                pack_id=pack.id,
                payment_intent_id=outcome.payment_intent_id,
                charge_id=outcome.charge_id,
            )
        await self.store.log_event(
            business_id, "auto_topup_succeeded", "auto_topup", outcome.payment_intent_id, {"pack_id": pack.id, "credits": pack.credits}
        )
        log.info(
            "auto_topup_succeeded",
            business_id=str(business_id),
            credits_added=pack.credits,
            balance_after=updated.credits_remaining,
        )
        return Result.success(pack.credits, balance=updated.credits_remaining)

    async def list_logs(self, business_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> list[AutoTopUpLog]:
        return await self.store.list_topup_logs(business_id, limit, offset)

    async def sweep(self, batch: int | None = None) -> dict[str, int]:
        """Re-evaluate every business with auto top-up enabled, one _id-ordered page at a time."""
        limit = batch or get_settings().auto_topup_sweep_batch
        checked = charged = failed = 0
        after: PydanticObjectId | None = None
        while True:
            ids = await self.store.auto_topup_business_ids(limit, after=after)
            for business_id in ids:
                result = await self.run(business_id)
                if not result.ok:
                    failed += 1
                elif result.value:
                    charged += 1
            checked += len(ids)
            if len(ids) < limit:
                break
            after = ids[-1]
        log.info("auto_topup_sweep", checked=checked, charged=charged, failed=failed)
        return {"checked": checked, "charged": charged, "failed": failed}


def topup_idempotency_key(business: Business, balance: CreditBalance) -> str:
    """Same key until the balance moves, so Stripe replays a charge whose response was lost."""
    period = int(balance.period_start.timestamp()) if balance.period_start else 0
    return (
        f"auto-topup-{business.id}-{business.stripe_default_payment_method}"
        f"-{period}-{balance.credits_purchased}-{balance.credits_used}"
    )
