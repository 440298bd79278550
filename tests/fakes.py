"""In-memory stand-ins for CreditStore and StripeGateway used by service and API tests."""

import asyncio
from datetime import datetime
from typing import Any

from beanie import PydanticObjectId

from zazzles.core.exceptions import BadRequestError
from zazzles.db.credit_store import AlreadyExists, StoreUnavailable
from zazzles.models.auto_topup_log import AutoTopUpLog
from zazzles.models.business import Business
from zazzles.models.credit_balance import CreditBalance
from zazzles.models.credit_transaction import CreditTransaction
from zazzles.models.promo_code import PromoCode, PromoRedemption
from zazzles.services.payment_gateway import ChargeOutcome, ChargeStatus


class InMemoryCreditStore:
    """Same interface as CreditStore. Each conditional update runs without yielding, like a single Mongo update."""

    def __init__(self):
        self.businesses: dict[PydanticObjectId, Business] = {}
        self.balances: dict[PydanticObjectId, CreditBalance] = {}
        self.transactions: list[CreditTransaction] = []
        self.topup_logs: list[AutoTopUpLog] = []
        self.events: list[dict[str, Any]] = []
        self.stripe_events: set[str] = set()
        self.promo_codes: dict[str, PromoCode] = {}
        self.redemptions: list[PromoRedemption] = []
        self.failing: set[str] = set()

    async def _enter(self, op: str) -> None:
        # Yield so concurrent callers interleave between operations.
        await asyncio.sleep(0)
        if op in self.failing:
            raise StoreUnavailable(f"{op} failed")

    # Businesses

    async def get_business(self, business_id):
        await self._enter("get_business")
        b = self.businesses.get(business_id)
        return b.model_copy(deep=True) if b else None

    async def get_business_by_customer(self, customer_id):
        await self._enter("get_business_by_customer")
        for b in self.businesses.values():
            if b.stripe_customer_id == customer_id:
                return b.model_copy(deep=True)
        return None

    async def get_business_by_email(self, email):
        await self._enter("get_business_by_email")
        for b in self.businesses.values():
            if b.email == email:
                return b.model_copy(deep=True)
        return None

    async def insert_business(self, business):
        await self._enter("insert_business")
        if any(b.email == business.email for b in self.businesses.values()):
            raise AlreadyExists(business.email)
        if business.id is None:
            business.id = PydanticObjectId()
        self.businesses[business.id] = business.model_copy(deep=True)
        return business

    async def save_business(self, business):
        await self._enter("save_business")
        stored = self.businesses[business.id]
        # Like CreditStore.save_business, leaves the claim marker alone.
        claimed_until = stored.auto_topup_claimed_until
        self.businesses[business.id] = business.model_copy(deep=True, update={"auto_topup_claimed_until": claimed_until})
        return business

    async def claim_auto_topup(self, business_id, now, until):
        await self._enter("claim_auto_topup")
        b = self.businesses.get(business_id)
        if b is None:
            return False
        if b.auto_topup_claimed_until is not None and b.auto_topup_claimed_until >= now:
            return False
        b.auto_topup_claimed_until = until
        return True

    async def release_auto_topup(self, business_id):
        await self._enter("release_auto_topup")
        if business_id in self.businesses:
            self.businesses[business_id].auto_topup_claimed_until = None

    async def auto_topup_business_ids(self, limit, after=None):
        await self._enter("auto_topup_business_ids")
        ids = sorted(b.id for b in self.businesses.values() if b.auto_topup_enabled)
        if after is not None:
            ids = [i for i in ids if i > after]
        return ids[:limit]

    # Balances

    async def get_balance(self, business_id):
        await self._enter("get_balance")
        bal = self.balances.get(business_id)
        return bal.model_copy() if bal else None

    async def create_balance(self, business_id, credits):
        await self._enter("create_balance")
        if business_id in self.balances:
            raise AlreadyExists(str(business_id))
        bal = CreditBalance(business_id=business_id, credits_remaining=credits, period_start=datetime.utcnow())
        self.balances[business_id] = bal
        return bal.model_copy()

    async def debit(self, business_id, amount):
        await self._enter("debit")
        bal = self.balances.get(business_id)
        if bal is None or bal.credits_remaining < amount:
            return None
        bal.credits_remaining -= amount
        bal.credits_used += amount
        return bal.model_copy()

    async def undo_debit(self, business_id, amount):
        await self._enter("undo_debit")
        bal = self.balances[business_id]
        bal.credits_remaining += amount
        bal.credits_used -= amount

    async def credit(self, business_id, amount, purchased=False):
        await self._enter("credit")
        bal = self.balances.get(business_id)
        if bal is None:
            return None
        bal.credits_remaining += amount
        if purchased:
            bal.credits_purchased += amount
        return bal.model_copy()

    async def reset_period(self, business_id, plan_credits):
        await self._enter("reset_period")
        bal = self.balances.get(business_id)
        if bal is None:
            return None
        bal.credits_remaining = plan_credits + bal.credits_purchased
        bal.credits_used = 0
        bal.period_start = datetime.utcnow()
        return bal.model_copy()

    # Ledger

    async def append_transaction(self, entry):
        await self._enter("append_transaction")
        self.transactions.append(entry)
        return entry

    async def list_transactions(self, business_id, limit, offset):
        await self._enter("list_transactions")
        rows = [t for t in reversed(self.transactions) if t.business_id == business_id]
        return rows[offset : offset + limit]

    async def has_payment_transaction(self, stripe_payment_id):
        await self._enter("has_payment_transaction")
        return any(t.stripe_payment_id == stripe_payment_id for t in self.transactions)

    async def append_topup_log(self, entry):
        await self._enter("append_topup_log")
        self.topup_logs.append(entry)
        return entry

    async def list_topup_logs(self, business_id, limit, offset):
        await self._enter("list_topup_logs")
        rows = [e for e in reversed(self.topup_logs) if e.business_id == business_id]
        return rows[offset : offset + limit]

    async def log_event(self, business_id, event_type, entity_type, entity_id=None, metadata=None):
        self.events.append(
            {
                "business_id": business_id,
                "event_type": event_type,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "metadata": metadata or {},
            }
        )

    # Webhook replay protection

    async def record_stripe_event(self, event_id, event_type):
        await self._enter("record_stripe_event")
        if event_id in self.stripe_events:
            raise AlreadyExists(event_id)
        self.stripe_events.add(event_id)

    async def forget_stripe_event(self, event_id):
        await self._enter("forget_stripe_event")
        self.stripe_events.discard(event_id)

    # Promo codes

    def add_promo(self, promo: PromoCode) -> PromoCode:
        if promo.id is None:
            promo.id = PydanticObjectId()
        self.promo_codes[promo.code] = promo
        return promo

    def _promo_by_id(self, promo_id):
        return next(p for p in self.promo_codes.values() if p.id == promo_id)

    async def get_promo_code(self, code):
        await self._enter("get_promo_code")
        promo = self.promo_codes.get(code)
        return promo.model_copy() if promo and promo.is_active else None

    async def claim_promo_use(self, promo_id):
        await self._enter("claim_promo_use")
        promo = self._promo_by_id(promo_id)
        if not promo.is_active or (promo.max_uses is not None and promo.current_uses >= promo.max_uses):
            return False
        promo.current_uses += 1
        return True

    async def release_promo_use(self, promo_id):
        await self._enter("release_promo_use")
        self._promo_by_id(promo_id).current_uses -= 1

    async def add_redemption(self, redemption):
        await self._enter("add_redemption")
        if any(
            r.promo_code_id == redemption.promo_code_id and r.business_id == redemption.business_id
            for r in self.redemptions
        ):
            raise AlreadyExists("redemption")
        self.redemptions.append(redemption)
        return redemption

    async def has_redeemed(self, promo_id, business_id):
        await self._enter("has_redeemed")
        return any(r.promo_code_id == promo_id and r.business_id == business_id for r in self.redemptions)

    async def remove_redemption(self, redemption):
        await self._enter("remove_redemption")
        self.redemptions.remove(redemption)


class FakeGateway:
    """Records every call; charge outcome and latency are configurable per test."""

    def __init__(self, outcome: ChargeOutcome | None = None, delay: float = 0.0, configured: bool = True):
        self.outcome = outcome or ChargeOutcome(ChargeStatus.SUCCEEDED, payment_intent_id="pi_test", charge_id="ch_test")
        self.delay = delay
        self.configured = configured
        self.currency = "usd"
        self.charges: list[dict[str, Any]] = []
        self.customers: list[dict[str, Any]] = []
        self.attached: list[tuple[str, str]] = []
        self.checkouts: list[dict[str, Any]] = []
        self.payment_methods: dict[str, dict[str, Any]] = {}

    async def charge_off_session(self, customer_id, payment_method_id, amount_cents, metadata, idempotency_key=None):
        self.charges.append(
            {
                "customer_id": customer_id,
                "payment_method_id": payment_method_id,
                "amount_cents": amount_cents,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.outcome

    async def create_customer(self, email, name, metadata):
        customer_id = f"cus_{len(self.customers) + 1}"
        self.customers.append({"id": customer_id, "email": email, "name": name, "metadata": metadata})
        return customer_id

    async def create_setup_intent(self, customer_id, metadata):
        return f"seti_secret_{customer_id}"

    async def list_card_payment_methods(self, customer_id):
        return [dict(pm) for pm in self.payment_methods.values()]

    async def retrieve_payment_method(self, payment_method_id):
        pm = self.payment_methods.get(payment_method_id)
        return dict(pm) if pm else None

    async def attach_default_payment_method(self, payment_method_id, customer_id):
        self.attached.append((payment_method_id, customer_id))

    async def create_credit_checkout(self, customer_id, price_id, success_url, cancel_url, metadata):
        self.checkouts.append({"customer_id": customer_id, "price_id": price_id, "metadata": metadata})
        return f"https://checkout.stripe.test/{price_id}"

    def construct_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        if signature != "valid-signature":
            raise BadRequestError("Invalid webhook signature")
        return {}
