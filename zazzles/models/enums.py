from enum import Enum


class TransactionType(str, Enum):
    USAGE = "usage"
    PURCHASE = "purchase"
    SUBSCRIPTION_CREDIT = "subscription_credit"
    PROMO_CREDIT = "promo_credit"
    BONUS = "bonus"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class TopUpStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SubscriptionStatus(str, Enum):
    NONE = "none"
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
