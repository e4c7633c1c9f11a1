"""
Closed status vocabularies for the billing engine.
Stored as their string values; str-Enums compare equal to the raw column value.
"""
from enum import Enum


class Tier(str, Enum):
    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"

    @property
    def is_paid(self) -> bool:
        return self is not Tier.FREE


PAID_TIERS = frozenset({Tier.PRO, Tier.PREMIUM})


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CANCELLED = "cancelled"


class PreapprovalStatus(str, Enum):
    """Normalized processor agreement status. Anything unknown collapses to OTHER."""

    AUTHORIZED = "authorized"
    CANCELLED = "cancelled"
    PAUSED = "paused"
    OTHER = "other"

    @classmethod
    def from_processor(cls, raw: str | None) -> "PreapprovalStatus":
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return cls.OTHER


class ReconciliationSource(str, Enum):
    WEBHOOK = "webhook"
    USER_RETURN = "user_return"
