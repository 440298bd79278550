"""Stripe adapter. Built once at startup and injected; SDK exceptions stay in here."""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any

import stripe

from zazzles.core.config import Settings
from zazzles.core.exceptions import BadRequestError, ServiceUnavailableError
from zazzles.core.logging import get_logger

log = get_logger(__name__)


class ChargeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    DECLINED = "declined"
    FAILED = "failed"


@dataclass(frozen=True)
class ChargeOutcome:
    status: ChargeStatus
    payment_intent_id: str | None = None
    charge_id: str | None = None
    detail: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == ChargeStatus.SUCCEEDED


class StripeGateway:
    def __init__(self, api_key: str, currency: str = "usd", charge_timeout: float = 20.0, webhook_secret: str = ""):
        self.api_key = api_key
        self.currency = currency
        self.charge_timeout = charge_timeout
        self.webhook_secret = webhook_secret
        if api_key:
            # Bounds the HTTP request itself; wait_for below only stops waiting on the thread.
            stripe.default_http_client = stripe.RequestsClient(timeout=charge_timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeGateway":
        return cls(
            api_key=settings.stripe_secret_key,
            currency=settings.stripe_currency,
            charge_timeout=settings.stripe_charge_timeout_seconds,
            webhook_secret=settings.stripe_webhook_secret,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _require_configured(self) -> None:
        if not self.configured:
            raise ServiceUnavailableError("Payments not configured", code="PAYMENTS_NOT_CONFIGURED")

    async def _call(self, fn, *args: Any, **params: Any):
        """Run a blocking SDK call off the event loop; map SDK errors to AppError."""
        self._require_configured()
        try:
            return await asyncio.to_thread(fn, *args, api_key=self.api_key, **params)
        except stripe.InvalidRequestError as e:
            log.warning("stripe_invalid_request", error=str(e))
            raise BadRequestError(getattr(e, "user_message", None) or "Invalid payment request") from e
        except stripe.StripeError as e:
            log.error("stripe_error", error=str(e))
            raise ServiceUnavailableError("Payment provider error", code="PAYMENT_PROVIDER_ERROR") from e

    async def charge_off_session(
        self,
        customer_id: str,
        payment_method_id: str,
        amount_cents: int,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> ChargeOutcome:
        """Confirm a PaymentIntent without the cardholder present. Never raises for payment outcomes."""
        if not self.configured:
            return ChargeOutcome(ChargeStatus.FAILED, detail="Payments not configured")
        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": self.currency,
            "customer": customer_id,
            "payment_method": payment_method_id,
            "off_session": True,
            "confirm": True,
            "metadata": metadata,
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        try:
            intent = await asyncio.wait_for(
                asyncio.to_thread(stripe.PaymentIntent.create, api_key=self.api_key, **params),
                timeout=self.charge_timeout,
            )
        except asyncio.TimeoutError:
            # The SDK call may still complete in its worker thread.
            log.error("stripe_charge_timeout", customer_id=customer_id, timeout=self.charge_timeout)
            return ChargeOutcome(ChargeStatus.FAILED, detail=f"Payment timed out after {self.charge_timeout}s")
        except stripe.CardError as e:
            err = getattr(e, "error", None)
            intent_obj = getattr(err, "payment_intent", None) if err is not None else None
            intent_id = getattr(intent_obj, "id", None) if intent_obj is not None else None
            message = getattr(e, "user_message", None) or str(e)
            log.warning("stripe_card_declined", customer_id=customer_id, code=getattr(e, "code", None))
            return ChargeOutcome(ChargeStatus.DECLINED, payment_intent_id=intent_id, detail=f"Card declined: {message}")
        except stripe.StripeError as e:
            log.error("stripe_charge_error", customer_id=customer_id, error=str(e))
            return ChargeOutcome(ChargeStatus.FAILED, detail=f"Payment error: {getattr(e, 'user_message', None) or e}")

        status = getattr(intent, "status", None)
        latest_charge = getattr(intent, "latest_charge", None)
        charge_id = latest_charge if isinstance(latest_charge, str) else getattr(latest_charge, "id", None)
        if status != "succeeded":
            return ChargeOutcome(ChargeStatus.FAILED, payment_intent_id=intent.id, detail=f"Payment status: {status}")
        return ChargeOutcome(ChargeStatus.SUCCEEDED, payment_intent_id=intent.id, charge_id=charge_id)

    async def create_customer(self, email: str, name: str, metadata: dict[str, str]) -> str:
        customer = await self._call(stripe.Customer.create, email=email, name=name, metadata=metadata)
        return customer.id

    async def create_setup_intent(self, customer_id: str, metadata: dict[str, str]) -> str:
        intent = await self._call(
            stripe.SetupIntent.create,
            customer=customer_id,
            payment_method_types=["card"],
            metadata=metadata,
        )
        return intent.client_secret

    async def list_card_payment_methods(self, customer_id: str) -> list[dict[str, Any]]:
        methods = await self._call(stripe.PaymentMethod.list, customer=customer_id, type="card")
        return [card_summary(pm) for pm in methods.data]

    async def retrieve_payment_method(self, payment_method_id: str) -> dict[str, Any] | None:
        """Card summary, or None when the method is gone or cannot be fetched."""
        try:
            pm = await self._call(stripe.PaymentMethod.retrieve, payment_method_id)
        except (BadRequestError, ServiceUnavailableError):
            return None
        return card_summary(pm)

    async def attach_default_payment_method(self, payment_method_id: str, customer_id: str) -> None:
        await self._call(stripe.PaymentMethod.attach, payment_method_id, customer=customer_id)
        await self._call(
            stripe.Customer.modify,
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )

    async def create_credit_checkout(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> str:
        session = await self._call(
            stripe.checkout.Session.create,
            customer=customer_id,
            mode="payment",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
        )
        return session.url

    def construct_event(self, payload: bytes, signature: str) -> stripe.Event:
        """Verify the Stripe-Signature header; BadRequestError when invalid."""
        if not self.webhook_secret:
            raise BadRequestError("Webhook secret not configured")
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise BadRequestError("Invalid webhook signature") from e


def card_summary(pm: Any) -> dict[str, Any]:
    card = getattr(pm, "card", None)
    return {
        "id": pm.id,
        "brand": getattr(card, "brand", None),
        "last4": getattr(card, "last4", None),
        "exp_month": getattr(card, "exp_month", None),
        "exp_year": getattr(card, "exp_year", None),
    }
