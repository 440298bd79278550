import asyncio
from datetime import datetime, timedelta

import pytest
from beanie import PydanticObjectId

from tests.fakes import FakeGateway
from zazzles.core.result import ErrorKind
from zazzles.models.enums import TopUpStatus, TransactionType
from zazzles.services.auto_topup import AutoTopUpService
from zazzles.services.credits import CreditService
from zazzles.services.payment_gateway import ChargeOutcome, ChargeStatus

pytestmark = pytest.mark.asyncio


async def test_disabled_never_charges(store, gateway, make_business):
    business = await make_business(credits=0, auto_topup=False)
    result = await AutoTopUpService(store, gateway).run(business.id)
    assert result.ok and result.value == 0
    assert gateway.charges == []
    assert store.topup_logs == []


@pytest.mark.parametrize("credits", [5, 6, 50])
async def test_at_or_above_threshold_never_charges(store, gateway, make_business, credits):
    business = await make_business(credits=credits, auto_topup=True, threshold=5)
    result = await AutoTopUpService(store, gateway).run(business.id)
    assert result.ok and result.value == 0
    assert gateway.charges == []


async def test_below_threshold_charges_configured_pack(store, gateway, make_business):
    business = await make_business(credits=3, auto_topup=True, threshold=5, pack_id="pack_9")

    result = await AutoTopUpService(store, gateway).run(business.id)

    assert result.ok
    assert result.value == 9
    assert result.balance == 12
    assert store.balances[business.id].credits_remaining == 12
    assert store.balances[business.id].credits_purchased == 9

    assert len(gateway.charges) == 1
    charge = gateway.charges[0]
    assert charge["amount_cents"] == 1000
    assert charge["customer_id"] == "cus_test"
    assert charge["payment_method_id"] == "pm_test"
    assert charge["metadata"]["type"] == "auto_topup"
    assert charge["idempotency_key"].startswith(f"auto-topup-{business.id}-")

    assert len(store.transactions) == 1
    tx = store.transactions[0]
    assert tx.transaction_type == TransactionType.PURCHASE
    assert tx.amount == 9
    assert tx.balance_after == 12
    assert tx.stripe_payment_id == "pi_test"

    assert len(store.topup_logs) == 1
    entry = store.topup_logs[0]
    assert entry.status == TopUpStatus.SUCCEEDED
    assert entry.credits_added == 9
    assert entry.amount_charged == 10
    assert entry.balance_before == 3
    assert entry.balance_after == 12
    assert entry.stripe_charge_id == "ch_test"
    assert store.businesses[business.id].auto_topup_claimed_until is None


@pytest.mark.parametrize(
    "status,kind",
    [(ChargeStatus.DECLINED, ErrorKind.PAYMENT_DECLINED), (ChargeStatus.FAILED, ErrorKind.PAYMENT_FAILED)],
)
async def test_failed_charge_leaves_balance_and_logs_once(store, make_business, status, kind):
    gateway = FakeGateway(ChargeOutcome(status, payment_intent_id="pi_bad", detail="Card declined: do_not_honor"))
    business = await make_business(credits=2, auto_topup=True, threshold=5)

    result = await AutoTopUpService(store, gateway).run(business.id)

    assert not result.ok
    assert result.error == kind
    assert result.detail == "Card declined: do_not_honor"
    assert store.balances[business.id].credits_remaining == 2
    assert store.transactions == []
    assert len(store.topup_logs) == 1
    entry = store.topup_logs[0]
    assert entry.status == TopUpStatus.FAILED
    assert entry.credits_added == 0
    assert entry.balance_before == entry.balance_after == 2
    assert entry.error_message == "Card declined: do_not_honor"
    assert store.businesses[business.id].auto_topup_claimed_until is None


async def test_missing_payment_method_is_configuration_error(store, gateway, make_business):
    business = await make_business(credits=1, auto_topup=True, threshold=5, payment_method=None)

    result = await AutoTopUpService(store, gateway).run(business.id)

    assert result.error == ErrorKind.CONFIGURATION_ERROR
    assert gateway.charges == []
    assert not any(e.status == TopUpStatus.SUCCEEDED for e in store.topup_logs)


async def test_missing_customer_is_configuration_error(store, gateway, make_business):
    business = await make_business(credits=1, auto_topup=True, customer_id=None)
    result = await AutoTopUpService(store, gateway).run(business.id)
    assert result.error == ErrorKind.CONFIGURATION_ERROR
    assert gateway.charges == []


async def test_unknown_pack(store, gateway, make_business):
    business = await make_business(credits=1, auto_topup=True, pack_id="pack_1000")
    result = await AutoTopUpService(store, gateway).run(business.id)
    assert result.error == ErrorKind.INVALID_PACK
    assert gateway.charges == []


async def test_unknown_business(store, gateway):
    result = await AutoTopUpService(store, gateway).run(PydanticObjectId())
    assert result.error == ErrorKind.BUSINESS_NOT_FOUND


async def test_store_unavailable(store, gateway, make_business):
    business = await make_business(credits=1, auto_topup=True)
    store.failing.add("get_balance")
    result = await AutoTopUpService(store, gateway).run(business.id)
    assert result.error == ErrorKind.STORE_UNAVAILABLE
    assert gateway.charges == []


async def test_charged_but_credit_failed_is_logged(store, gateway, make_business):
    business = await make_business(credits=1, auto_topup=True)
    store.failing.add("credit")

    result = await AutoTopUpService(store, gateway).run(business.id)

    assert result.error == ErrorKind.STORE_UNAVAILABLE
    assert len(gateway.charges) == 1
    assert len(store.topup_logs) == 1
    assert store.topup_logs[0].status == TopUpStatus.FAILED
    assert store.topup_logs[0].stripe_payment_intent_id == "pi_test"


async def test_concurrent_triggers_charge_once(store, make_business):
    gateway = FakeGateway(delay=0.01)
    business = await make_business(credits=1, auto_topup=True, threshold=5)
    service = AutoTopUpService(store, gateway)

    results = await asyncio.gather(*(service.run(business.id) for _ in range(5)))

    assert len(gateway.charges) == 1
    assert sum(r.value or 0 for r in results) == 9
    assert store.balances[business.id].credits_remaining == 10
    assert len(store.topup_logs) == 1


async def test_stale_claim_is_taken_over(store, gateway, make_business):
    business = await make_business(credits=1, auto_topup=True)
    store.businesses[business.id].auto_topup_claimed_until = datetime.utcnow() - timedelta(seconds=1)

    result = await AutoTopUpService(store, gateway).run(business.id)

    assert result.value == 9
    assert len(gateway.charges) == 1


async def test_live_claim_blocks_charge(store, gateway, make_business):
    business = await make_business(credits=1, auto_topup=True)
    store.businesses[business.id].auto_topup_claimed_until = datetime.utcnow() + timedelta(minutes=1)

    result = await AutoTopUpService(store, gateway).run(business.id)

    assert result.ok and result.value == 0
    assert gateway.charges == []


async def test_defaults_apply_when_business_settings_empty(store, gateway, make_business):
    business = await make_business(credits=3, auto_topup=True)
    stored = store.businesses[business.id]
    stored.auto_topup_threshold = None
    stored.auto_topup_pack = None

    result = await AutoTopUpService(store, gateway, default_threshold=4, default_pack="pack_4").run(business.id)

    assert result.value == 4
    assert gateway.charges[0]["amount_cents"] == 500


async def test_sweep_counts(store, make_business):
    gateway = FakeGateway()
    await make_business(credits=1, auto_topup=True)
    await make_business(credits=50, auto_topup=True)
    await make_business(credits=1, auto_topup=True, payment_method=None)
    await make_business(credits=0, auto_topup=False)

    summary = await AutoTopUpService(store, gateway).sweep()

    assert summary == {"checked": 3, "charged": 1, "failed": 1}
    assert len(gateway.charges) == 1


async def test_list_logs_newest_first(store, make_business):
    business = await make_business(credits=1, auto_topup=True)
    gateway = FakeGateway(ChargeOutcome(ChargeStatus.DECLINED, detail="Card declined: expired_card"))
    service = AutoTopUpService(store, gateway)
    await service.run(business.id)
    gateway.outcome = ChargeOutcome(ChargeStatus.SUCCEEDED, payment_intent_id="pi_2")
    await service.run(business.id)

    logs = await service.list_logs(business.id)

    assert [e.status for e in logs] == [TopUpStatus.SUCCEEDED, TopUpStatus.FAILED]


async def test_charged_and_credited_still_logged_when_ledger_write_fails(store, gateway, make_business):
    business = await make_business(credits=1, auto_topup=True, threshold=5)
    store.failing.add("append_transaction")

    result = await AutoTopUpService(store, gateway).run(business.id)

    assert result.ok and result.value == 9
    assert len(gateway.charges) == 1
    assert store.balances[business.id].credits_remaining == 10
    assert store.transactions == []
    assert len(store.topup_logs) == 1
    entry = store.topup_logs[0]
    assert entry.status == TopUpStatus.SUCCEEDED
    assert entry.stripe_payment_intent_id == "pi_test"
    assert entry.stripe_charge_id == "ch_test"
    assert store.businesses[business.id].auto_topup_claimed_until is None


async def test_log_write_failure_after_charge_reports_success(store, gateway, make_business):
    business = await make_business(credits=1, auto_topup=True, threshold=5)
    store.failing.add("append_topup_log")

    result = await AutoTopUpService(store, gateway).run(business.id)

    assert result.ok and result.value == 9
    assert len(store.transactions) == 1
    assert store.balances[business.id].credits_remaining == 10


async def test_sweep_pages_past_first_batch(store, make_business):
    gateway = FakeGateway()
    for _ in range(3):
        await make_business(credits=50, auto_topup=True)
    low = await make_business(credits=1, auto_topup=True)
    service = AutoTopUpService(store, gateway)

    summary = await service.sweep(batch=3)

    assert summary == {"checked": 4, "charged": 1, "failed": 0}
    assert store.balances[low.id].credits_remaining == 10
    assert await service.sweep(batch=3) == {"checked": 4, "charged": 0, "failed": 0}


async def test_retry_after_lost_charge_reuses_idempotency_key(store, make_business):
    gateway = FakeGateway(outcome=ChargeOutcome(ChargeStatus.FAILED, detail="Payment timed out after 20.0s"))
    business = await make_business(credits=1, auto_topup=True, threshold=5)
    service = AutoTopUpService(store, gateway)

    await service.run(business.id)
    gateway.outcome = ChargeOutcome(ChargeStatus.SUCCEEDED, payment_intent_id="pi_test", charge_id="ch_test")
    await service.run(business.id)
    await CreditService(store).deduct(business.id, 8, "Image enhancement")
    await service.run(business.id)

    keys = [c["idempotency_key"] for c in gateway.charges]
    assert len(keys) == 3
    assert keys[0] == keys[1]
    assert keys[2] != keys[1]
