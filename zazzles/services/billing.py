"""Stripe checkout, saved cards and webhook events: idempotent credit apply, subscription sync."""

import json
from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from bson.errors import InvalidId

from zazzles.core.config import get_settings
from zazzles.core.exceptions import BadRequestError, ServiceUnavailableError
from zazzles.core.logging import get_logger
from zazzles.core.result import ErrorKind
from zazzles.db.credit_store import AlreadyExists, CreditStore, StoreUnavailable
from zazzles.models.business import Business
from zazzles.models.credit_transaction import CreditTransaction
from zazzles.models.enums import SubscriptionStatus, TransactionType
from zazzles.services.businesses import ensure_stripe_customer
from zazzles.services.catalog import get_pack, get_plan_by_price_id, get_plan_credits
from zazzles.services.credits import CreditService
from zazzles.services.payment_gateway import StripeGateway

log = get_logger(__name__)

_SUBSCRIPTION_STATUS = {
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "trialing": SubscriptionStatus.TRIAL,
}


async def create_credit_checkout(store: CreditStore, gateway: StripeGateway, business: Business, pack_id: str) -> str:
    """One-time checkout for a credit pack; returns the hosted checkout URL."""
    pack = get_pack(pack_id)
    if pack is None:
        raise BadRequestError("Invalid credit pack ID")
    if not pack.price_id:
        raise ServiceUnavailableError("Stripe price ID not configured for this credit pack", code="PRICE_NOT_CONFIGURED")
    customer_id = await ensure_stripe_customer(store, gateway, business)
    app_url = get_settings().app_url.rstrip("/")
    return await gateway.create_credit_checkout(
        customer_id=customer_id,
        price_id=pack.price_id,
        success_url=f"{app_url}/billing?credits_success=true&session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{app_url}/billing?canceled=true",
        metadata={
            "business_id": str(business.id),
            "pack_id": pack.id,
            "credits": str(pack.credits),
            "type": "credit_purchase",
        },
    )


async def create_setup_intent(store: CreditStore, gateway: StripeGateway, business: Business) -> dict[str, str]:
    """SetupIntent used by the client to save a card for auto top-up."""
    customer_id = await ensure_stripe_customer(store, gateway, business)
    client_secret = await gateway.create_setup_intent(
        customer_id,
        metadata={"business_id": str(business.id), "purpose": "auto_topup"},
    )
    return {"client_secret": client_secret, "customer_id": customer_id}


async def list_payment_methods(gateway: StripeGateway, business: Business) -> dict[str, Any]:
    if not business.stripe_customer_id:
        return {"payment_methods": [], "default_payment_method": None}
    methods = await gateway.list_card_payment_methods(business.stripe_customer_id)
    for m in methods:
        m["is_default"] = m["id"] == business.stripe_default_payment_method
    return {"payment_methods": methods, "default_payment_method": business.stripe_default_payment_method}


def _parse_business_id(value: Any) -> PydanticObjectId | None:
    try:
        return PydanticObjectId(str(value)) if value else None
    except (InvalidId, TypeError):
        return None


def _ts(value: Any) -> datetime | None:
    return datetime.utcfromtimestamp(int(value)) if value else None


class StripeWebhookHandler:
    def __init__(self, store: CreditStore, credits: CreditService, gateway: StripeGateway):
        self.store = store
        self.credits = credits
        self.gateway = gateway

    async def handle(self, payload: bytes, signature: str) -> str:
        """Verify signature, then process the event once. Returns a short status string."""
        self.gateway.construct_event(payload, signature)
        event = json.loads(payload.decode())
        return await self.handle_event(event)

    async def handle_event(self, event: dict[str, Any]) -> str:
        event_id = event.get("id") or ""
        event_type = event.get("type") or ""
        try:
            await self.store.record_stripe_event(event_id, event_type)
        except AlreadyExists:
            log.info("stripe_event_duplicate", event_id=event_id, event_type=event_type)
            return "duplicate"
        obj = (event.get("data") or {}).get("object") or {}
        try:
            return await self._dispatch(event_type, obj)
        except Exception:
            # Let Stripe redeliver: the event id must not stay marked as processed.
            await self.store.forget_stripe_event(event_id)
            log.exception("stripe_event_failed", event_id=event_id, event_type=event_type)
            raise

    async def _dispatch(self, event_type: str, obj: dict[str, Any]) -> str:
        if event_type == "checkout.session.completed":
            metadata = obj.get("metadata") or {}
            if obj.get("mode") == "payment" and metadata.get("type") == "credit_purchase":
                return await self._credit_purchase(obj)
            if obj.get("mode") == "subscription":
                return await self._subscription_checkout(obj)
            return "ignored"
        if event_type in ("customer.subscription.created", "customer.subscription.updated"):
            return await self._subscription_update(obj)
        if event_type == "customer.subscription.deleted":
            return await self._subscription_canceled(obj)
        if event_type == "invoice.paid":
            return await self._invoice_paid(obj)
        if event_type == "invoice.payment_failed":
            return await self._invoice_payment_failed(obj)
        log.info("stripe_event_unhandled", event_type=event_type)
        return "ignored"

    async def _credit_purchase(self, session: dict[str, Any]) -> str:
        metadata = session.get("metadata") or {}
        business_id = _parse_business_id(metadata.get("business_id"))
        credits = int(metadata.get("credits") or 0)
        if business_id is None or credits <= 0:
            log.error("stripe_credit_purchase_bad_metadata", metadata=metadata)
            return "ignored"
        payment_intent = session.get("payment_intent")
        if payment_intent and await self.store.has_payment_transaction(payment_intent):
            log.info("stripe_credit_purchase_already_applied", business_id=str(business_id), payment_intent=payment_intent)
            return "duplicate"
        if await self.store.get_balance(business_id) is None:
            await self.credits.open_account(business_id, 0)
        result = await self.credits.grant(
            business_id,
            credits,
            TransactionType.PURCHASE,
            f"Purchased {credits} credits",
            stripe_payment_id=payment_intent,
            purchased=True,
        )
        if not result.ok:
            if result.error == ErrorKind.STORE_UNAVAILABLE:
                raise StoreUnavailable(result.detail or "credit purchase failed")
            log.error("stripe_credit_purchase_failed", business_id=str(business_id), error=result.detail)
            return "failed"
        await self.store.log_event(
            business_id, "credit_purchase", "payment", payment_intent, {"credits": credits, "pack_id": metadata.get("pack_id")}
        )
        return "credited"

    async def _subscription_checkout(self, session: dict[str, Any]) -> str:
        metadata = session.get("metadata") or {}
        business_id = _parse_business_id(metadata.get("business_id"))
        plan_id = metadata.get("plan_id")
        if business_id is None or not plan_id:
            log.error("stripe_subscription_checkout_bad_metadata", metadata=metadata)
            return "ignored"
        business = await self.store.get_business(business_id)
        if business is None:
            return "ignored"
        business.subscription_status = SubscriptionStatus.ACTIVE
        business.subscription_tier = plan_id
        await self.store.save_business(business)
        log.info("subscription_checkout_completed", business_id=str(business_id), plan_id=plan_id)
        return "updated"

    async def _business_for_customer(self, customer_id: str | None) -> Business | None:
        business = await self.store.get_business_by_customer(customer_id) if customer_id else None
        if business is None:
            log.error("stripe_unknown_customer", customer_id=customer_id)
        return business

    async def _subscription_update(self, subscription: dict[str, Any]) -> str:
        business = await self._business_for_customer(subscription.get("customer"))
        if business is None:
            return "ignored"
        items = (subscription.get("items") or {}).get("data") or []
        first_item = items[0] if items else {}
        price_id = (first_item.get("price") or {}).get("id")
        plan = get_plan_by_price_id(price_id) if price_id else None
        status = subscription.get("status")
        business.subscription_status = _SUBSCRIPTION_STATUS.get(status, SubscriptionStatus.NONE)
        if plan is not None:
            business.subscription_tier = plan.id
        period_end = subscription.get("current_period_end") or first_item.get("current_period_end")
        if period_end:
            business.subscription_ends_at = _ts(period_end)
        await self.store.save_business(business)
        log.info("subscription_updated", business_id=str(business.id), status=status, plan_id=business.subscription_tier)
        return "updated"

    async def _subscription_canceled(self, subscription: dict[str, Any]) -> str:
        business = await self._business_for_customer(subscription.get("customer"))
        if business is None:
            return "ignored"
        business.subscription_status = SubscriptionStatus.CANCELED
        await self.store.save_business(business)
        log.info("subscription_canceled", business_id=str(business.id))
        return "updated"

    async def _invoice_paid(self, invoice: dict[str, Any]) -> str:
        """Monthly reset: plan credits plus purchased credits, which never expire."""
        if not invoice.get("subscription") and not (invoice.get("parent") or {}).get("subscription_details"):
            return "ignored"
        business = await self._business_for_customer(invoice.get("customer"))
        if business is None:
            return "ignored"
        tier = business.subscription_tier or "starter"
        plan_credits = get_plan_credits(tier)
        balance = await self.store.reset_period(business.id, plan_credits)
        if balance is None:
            balance = await self.store.create_balance(business.id, plan_credits)
            description = f"Initial credits ({tier} plan)"
        else:
            description = f"Monthly credits reset ({tier} plan)"
        await self.store.append_transaction(
            CreditTransaction(
                business_id=business.id,
                amount=plan_credits,
                transaction_type=TransactionType.SUBSCRIPTION_CREDIT,
                description=description,
                balance_after=balance.credits_remaining,
            )
        )
        log.info("subscription_credits_reset", business_id=str(business.id), plan_credits=plan_credits)
        return "credited"

    async def _invoice_payment_failed(self, invoice: dict[str, Any]) -> str:
        business = await self._business_for_customer(invoice.get("customer"))
        if business is None:
            return "ignored"
        business.subscription_status = SubscriptionStatus.PAST_DUE
        await self.store.save_business(business)
        log.info("invoice_payment_failed", business_id=str(business.id))
        return "updated"
