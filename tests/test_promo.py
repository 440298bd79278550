from datetime import datetime, timedelta

import pytest

from zazzles.core.exceptions import BadRequestError, ConflictError, NotFoundError, ServiceUnavailableError
from zazzles.models.enums import TransactionType
from zazzles.models.promo_code import PromoCode
from zazzles.services import promo as promo_service
from zazzles.services.credits import CreditService

pytestmark = pytest.mark.asyncio


async def test_redeem_credits_balance(store, make_business):
    business = await make_business(credits=3)
    store.add_promo(PromoCode(code="LAUNCH10", credits=10))

    out = await promo_service.redeem(store, CreditService(store), business.id, " launch10 ")

    assert out == {"code": "LAUNCH10", "credits_added": 10, "credits_remaining": 13}
    assert store.transactions[-1].transaction_type == TransactionType.PROMO_CREDIT
    assert store.promo_codes["LAUNCH10"].current_uses == 1
    assert any(e["event_type"] == "promo_redeemed" for e in store.events)


async def test_redeem_twice_conflicts(store, make_business):
    business = await make_business(credits=0)
    store.add_promo(PromoCode(code="ONCE", credits=5))
    credits = CreditService(store)
    await promo_service.redeem(store, credits, business.id, "ONCE")

    with pytest.raises(ConflictError):
        await promo_service.redeem(store, credits, business.id, "ONCE")
    assert store.balances[business.id].credits_remaining == 5
    assert store.promo_codes["ONCE"].current_uses == 1


async def test_usage_limit(store, make_business):
    first = await make_business(credits=0)
    second = await make_business(credits=0)
    store.add_promo(PromoCode(code="ONLYONE", credits=5, max_uses=1))
    credits = CreditService(store)
    await promo_service.redeem(store, credits, first.id, "ONLYONE")

    with pytest.raises(BadRequestError):
        await promo_service.redeem(store, credits, second.id, "ONLYONE")
    assert store.balances[second.id].credits_remaining == 0


@pytest.mark.parametrize(
    "fields,error",
    [
        ({"is_active": False}, NotFoundError),
        ({"starts_at": datetime.utcnow() + timedelta(days=1)}, BadRequestError),
        ({"expires_at": datetime.utcnow() - timedelta(days=1)}, BadRequestError),
    ],
)
async def test_inactive_codes_rejected(store, make_business, fields, error):
    business = await make_business(credits=0)
    store.add_promo(PromoCode(code="OFF", credits=5, **fields))
    with pytest.raises(error):
        await promo_service.redeem(store, CreditService(store), business.id, "OFF")
    assert store.transactions == []


async def test_unknown_and_blank_codes(store, make_business):
    business = await make_business(credits=0)
    credits = CreditService(store)
    with pytest.raises(NotFoundError):
        await promo_service.redeem(store, credits, business.id, "NOPE")
    with pytest.raises(BadRequestError):
        await promo_service.redeem(store, credits, business.id, "   ")


async def test_failed_grant_rolls_back_use_and_redemption(store, make_business):
    business = await make_business(credits=0)
    store.add_promo(PromoCode(code="ROLLBACK", credits=5, max_uses=1))
    store.failing.add("credit")

    with pytest.raises(ServiceUnavailableError):
        await promo_service.redeem(store, CreditService(store), business.id, "ROLLBACK")

    assert store.promo_codes["ROLLBACK"].current_uses == 0
    assert store.redemptions == []
