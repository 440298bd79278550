"""Business signup and auto top-up settings."""

from typing import Any

from zazzles.core.config import get_settings
from zazzles.core.exceptions import BadRequestError, ConflictError
from zazzles.core.logging import get_logger
from zazzles.db.credit_store import AlreadyExists, CreditStore
from zazzles.models.business import Business
from zazzles.services.auto_topup import AutoTopUpService
from zazzles.services.catalog import get_pack
from zazzles.services.credits import CreditService
from zazzles.services.payment_gateway import StripeGateway

log = get_logger(__name__)

MIN_THRESHOLD = 1
MAX_THRESHOLD = 100


async def create_business(store: CreditStore, credits: CreditService, name: str, email: str) -> Business:
    """Signup: tenant record plus credit balance with the trial grant."""
    email = email.strip().lower()
    if await store.get_business_by_email(email):
        raise ConflictError("A business with this email already exists")
    business = Business(name=name.strip(), email=email)
    try:
        await store.insert_business(business)
    except AlreadyExists as e:
        raise ConflictError("A business with this email already exists") from e
    trial = get_settings().trial_credits
    await credits.open_account(business.id, trial)
    log.info("business_created", business_id=str(business.id), trial_credits=trial)
    await store.log_event(business.id, "business_created", "business", str(business.id), {"email": email})
    return business


def session_payload_for_business(business: Business) -> dict:
    return {"business_id": str(business.id), "session_version": business.session_version}


async def ensure_stripe_customer(store: CreditStore, gateway: StripeGateway, business: Business) -> str:
    """Return the Stripe customer id, creating and saving one on first use."""
    if business.stripe_customer_id:
        return business.stripe_customer_id
    customer_id = await gateway.create_customer(
        email=business.email,
        name=business.name,
        metadata={"business_id": str(business.id)},
    )
    business.stripe_customer_id = customer_id
    await store.save_business(business)
    log.info("stripe_customer_created", business_id=str(business.id), customer_id=customer_id)
    return customer_id


async def get_auto_topup_settings(
    gateway: StripeGateway, auto_topup: AutoTopUpService, business: Business
) -> dict[str, Any]:
    payment_method = None
    if business.stripe_customer_id and business.stripe_default_payment_method and gateway.configured:
        # The card may have been removed on Stripe's side.
        payment_method = await gateway.retrieve_payment_method(business.stripe_default_payment_method)
    return {
        "enabled": business.auto_topup_enabled,
        "threshold": auto_topup.threshold_for(business),
        "pack_id": auto_topup.pack_id_for(business),
        "payment_method": payment_method,
    }


async def update_auto_topup_settings(
    store: CreditStore,
    gateway: StripeGateway,
    business: Business,
    enabled: bool | None = None,
    threshold: int | None = None,
    pack_id: str | None = None,
    payment_method_id: str | None = None,
) -> Business:
    if pack_id is not None and get_pack(pack_id) is None:
        raise BadRequestError("Invalid pack ID")
    if threshold is not None and not (MIN_THRESHOLD <= threshold <= MAX_THRESHOLD):
        raise BadRequestError(f"Threshold must be between {MIN_THRESHOLD} and {MAX_THRESHOLD}")
    if enabled and not payment_method_id and not business.stripe_default_payment_method:
        raise BadRequestError("Please add a payment method before enabling auto top-up")

    if payment_method_id:
        customer_id = await ensure_stripe_customer(store, gateway, business)
        await gateway.attach_default_payment_method(payment_method_id, customer_id)
        business.stripe_default_payment_method = payment_method_id

    if enabled is not None:
        business.auto_topup_enabled = enabled
    if threshold is not None:
        business.auto_topup_threshold = threshold
    if pack_id is not None:
        business.auto_topup_pack = pack_id
    await store.save_business(business)
    log.info(
        "auto_topup_settings_updated",
        business_id=str(business.id),
        enabled=business.auto_topup_enabled,
        threshold=business.auto_topup_threshold,
        pack_id=business.auto_topup_pack,
    )
    await store.log_event(
        business.id,
        "auto_topup_settings_updated",
        "business",
        str(business.id),
        {"enabled": business.auto_topup_enabled, "threshold": business.auto_topup_threshold, "pack_id": business.auto_topup_pack},
    )
    return business
