"""Credit ledger: atomic debits and grants, each logged as one CreditTransaction."""

from typing import TYPE_CHECKING

from beanie import PydanticObjectId

from zazzles.core.logging import get_logger
from zazzles.core.result import ErrorKind, Result
from zazzles.db.credit_store import CreditStore, StoreUnavailable
from zazzles.models.credit_balance import CreditBalance
from zazzles.models.credit_transaction import CreditTransaction
from zazzles.models.enums import TransactionType

if TYPE_CHECKING:
    from zazzles.services.auto_topup import AutoTopUpService

log = get_logger(__name__)


class CreditService:
    def __init__(self, store: CreditStore, auto_topup: "AutoTopUpService | None" = None):
        self.store = store
        self.auto_topup = auto_topup

    async def get_balance(self, business_id: PydanticObjectId) -> CreditBalance | None:
        return await self.store.get_balance(business_id)

    async def list_transactions(self, business_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> list[CreditTransaction]:
        """Newest first."""
        return await self.store.list_transactions(business_id, limit, offset)

    async def check_available(self, business_id: PydanticObjectId, amount: int = 1) -> Result[int]:
        """Pre-flight check before expensive work; does not reserve anything."""
        try:
            balance = await self.store.get_balance(business_id)
        except StoreUnavailable:
            return Result.failure(ErrorKind.STORE_UNAVAILABLE, "Failed to read credits")
        if balance is None:
            return Result.failure(ErrorKind.BUSINESS_NOT_FOUND, "Credits not found")
        if balance.credits_remaining < amount:
            return Result.failure(
                ErrorKind.INSUFFICIENT_CREDITS,
                f"You need at least {amount} credit(s). Please purchase more credits.",
                balance=balance.credits_remaining,
            )
        return Result.success(balance.credits_remaining, balance=balance.credits_remaining)

    async def deduct(
        self,
        business_id: PydanticObjectId,
        amount: int,
        description: str,
        image_id: str | None = None,
    ) -> Result[int]:
        """
        Debit `amount` credits and log a usage transaction; value is the new balance.
        On success the auto top-up check runs; its outcome never changes this result.
        """
        if amount <= 0:
            return Result.failure(ErrorKind.INVALID_AMOUNT, "Amount must be a positive integer")
        try:
            updated = await self.store.debit(business_id, amount)
            if updated is None:
                current = await self.store.get_balance(business_id)
                if current is None:
                    return Result.failure(ErrorKind.BUSINESS_NOT_FOUND, "Credits not found")
                log.info(
                    "deduction_rejected",
                    business_id=str(business_id),
                    amount=amount,
                    credits_remaining=current.credits_remaining,
                )
                return Result.failure(
                    ErrorKind.INSUFFICIENT_CREDITS,
                    "Insufficient credits",
                    balance=current.credits_remaining,
                )
        except StoreUnavailable:
            return Result.failure(ErrorKind.STORE_UNAVAILABLE, "Failed to deduct credits")

        new_balance = updated.credits_remaining
        try:
            await self.store.append_transaction(
                CreditTransaction(
                    business_id=business_id,
                    amount=-amount,
                    transaction_type=TransactionType.USAGE,
                    description=description,
                    image_id=image_id,
                    balance_after=new_balance,
                )
            )
        except StoreUnavailable:
            await self._undo_debit(business_id, amount)
            return Result.failure(ErrorKind.STORE_UNAVAILABLE, "Failed to record credit usage")

        log.info("credits_deducted", business_id=str(business_id), amount=amount, balance_after=new_balance)
        await self._run_auto_topup(business_id)
        return Result.success(new_balance, balance=new_balance)

    async def grant(
        self,
        business_id: PydanticObjectId,
        amount: int,
        transaction_type: TransactionType,
        description: str,
        stripe_payment_id: str | None = None,
        purchased: bool = False,
    ) -> Result[int]:
        """Credit the balance and log one transaction; value is the new balance."""
        if amount <= 0:
            return Result.failure(ErrorKind.INVALID_AMOUNT, "Amount must be a positive integer")
        try:
            updated = await self.store.credit(business_id, amount, purchased=purchased)
            if updated is None:
                return Result.failure(ErrorKind.BUSINESS_NOT_FOUND, "Credits not found")
            await self.store.append_transaction(
                CreditTransaction(
                    business_id=business_id,
                    amount=amount,
                    transaction_type=transaction_type,
                    description=description,
                    stripe_payment_id=stripe_payment_id,
                    balance_after=updated.credits_remaining,
                )
            )
        except StoreUnavailable:
            log.error(
                "credit_grant_failed",
                business_id=str(business_id),
                amount=amount,
                transaction_type=transaction_type.value,
                stripe_payment_id=stripe_payment_id,
            )
            return Result.failure(ErrorKind.STORE_UNAVAILABLE, "Failed to add credits")
        log.info(
            "credits_granted",
            business_id=str(business_id),
            amount=amount,
            transaction_type=transaction_type.value,
            balance_after=updated.credits_remaining,
        )
        return Result.success(updated.credits_remaining, balance=updated.credits_remaining)

    async def open_account(self, business_id: PydanticObjectId, starting_credits: int) -> CreditBalance:
        """Signup: create the balance with its starting grant and log it."""
        balance = await self.store.create_balance(business_id, starting_credits)
        if starting_credits > 0:
            await self.store.append_transaction(
                CreditTransaction(
                    business_id=business_id,
                    amount=starting_credits,
                    transaction_type=TransactionType.BONUS,
                    description=f"Welcome bonus: {starting_credits} trial credits",
                    balance_after=balance.credits_remaining,
                )
            )
        return balance

    async def _undo_debit(self, business_id: PydanticObjectId, amount: int) -> None:
        try:
            await self.store.undo_debit(business_id, amount)
            log.warning("deduction_reverted", business_id=str(business_id), amount=amount)
        except StoreUnavailable:
            log.error("deduction_revert_failed", business_id=str(business_id), amount=amount)

    async def _run_auto_topup(self, business_id: PydanticObjectId) -> None:
        if self.auto_topup is None:
            return
        try:
            result = await self.auto_topup.run(business_id)
        except Exception:
            log.exception("auto_topup_crashed", business_id=str(business_id))
            return
        if not result.ok:
            log.warning(
                "auto_topup_not_completed",
                business_id=str(business_id),
                error=result.error.value if result.error else None,
                detail=result.detail,
            )
        elif result.value:
            log.info("auto_topup_triggered", business_id=str(business_id), credits_added=result.value)
