from zazzles.models.business import Business
from zazzles.models.credit_balance import CreditBalance
from zazzles.models.credit_transaction import CreditTransaction
from zazzles.models.auto_topup_log import AutoTopUpLog
from zazzles.models.promo_code import PromoCode, PromoRedemption
from zazzles.models.audit_log import AuditLog
from zazzles.models.failed_job import FailedJob
from zazzles.models.stripe_event import StripeEvent
from zazzles.models.enums import SubscriptionStatus, TopUpStatus, TransactionType

__all__ = [
    "Business",
    "CreditBalance",
    "CreditTransaction",
    "AutoTopUpLog",
    "PromoCode",
    "PromoRedemption",
    "AuditLog",
    "FailedJob",
    "StripeEvent",
    "SubscriptionStatus",
    "TopUpStatus",
    "TransactionType",
]
