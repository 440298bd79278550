"""Shared FastAPI dependencies."""

from beanie import PydanticObjectId
from bson.errors import InvalidId
from fastapi import Depends, Request

from zazzles.core.exceptions import UnauthorizedError
from zazzles.core.security import load_session_cookie
from zazzles.db.credit_store import CreditStore
from zazzles.models.business import Business
from zazzles.services.auto_topup import AutoTopUpService
from zazzles.services.billing import StripeWebhookHandler
from zazzles.services.credits import CreditService
from zazzles.services.payment_gateway import StripeGateway

SESSION_COOKIE_NAME = "zazzles_session"


def get_store(request: Request) -> CreditStore:
    return request.app.state.store


def get_gateway(request: Request) -> StripeGateway:
    return request.app.state.gateway


def get_auto_topup_service(
    store: CreditStore = Depends(get_store),
    gateway: StripeGateway = Depends(get_gateway),
) -> AutoTopUpService:
    return AutoTopUpService(store, gateway)


def get_credit_service(
    store: CreditStore = Depends(get_store),
    auto_topup: AutoTopUpService = Depends(get_auto_topup_service),
) -> CreditService:
    return CreditService(store, auto_topup=auto_topup)


def get_webhook_handler(
    store: CreditStore = Depends(get_store),
    credits: CreditService = Depends(get_credit_service),
    gateway: StripeGateway = Depends(get_gateway),
) -> StripeWebhookHandler:
    return StripeWebhookHandler(store, credits, gateway)


async def get_current_business(request: Request, store: CreditStore = Depends(get_store)) -> Business:
    """Dependency: load session from cookie and return Business."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    raw_id = payload.get("business_id")
    if not raw_id:
        raise UnauthorizedError("Invalid session")
    try:
        business_id = PydanticObjectId(raw_id)
    except (InvalidId, TypeError):
        raise UnauthorizedError("Invalid session")
    business = await store.get_business(business_id)
    if not business:
        raise UnauthorizedError("Business not found")
    if payload.get("session_version") != business.session_version:
        raise UnauthorizedError("Session invalidated")
    return business
