import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from zazzles.core.config import get_settings
from zazzles.models.audit_log import AuditLog
from zazzles.models.auto_topup_log import AutoTopUpLog
from zazzles.models.business import Business
from zazzles.models.credit_balance import CreditBalance
from zazzles.models.credit_transaction import CreditTransaction
from zazzles.models.failed_job import FailedJob
from zazzles.models.promo_code import PromoCode, PromoRedemption
from zazzles.models.stripe_event import StripeEvent

DOCUMENT_MODELS = [
    Business,
    CreditBalance,
    CreditTransaction,
    AutoTopUpLog,
    PromoCode,
    PromoRedemption,
    StripeEvent,
    AuditLog,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True for Atlas or explicit tls=true; plain mongodb:// in CI stays unencrypted."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(db_name: str | None = None) -> AsyncIOMotorClient:
    settings = get_settings()
    # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
    kwargs = {}
    if _use_tls(settings.mongodb_uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    database = client[db_name or settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    return client
