"""
SubscriptionService - the subscription state machine.

Every transition takes a VerifiedPreapproval; nothing here accepts client input.
Does not commit: the reconciliation service owns the transaction.
"""
import logging
from datetime import datetime
from typing import assert_never

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from wardrobe_billing.db.upsert import insert_for
from wardrobe_billing.models.subscription import Subscription
from wardrobe_billing.services.billing.config import BillingConfig
from wardrobe_billing.services.billing.enums import PreapprovalStatus, SubscriptionStatus, Tier
from wardrobe_billing.services.preapproval.verifier import VerifiedPreapproval
from wardrobe_billing.utils.clock import add_months, as_utc, utcnow

logger = logging.getLogger(__name__)


class SubscriptionService:
    def __init__(self, db: Session, config: BillingConfig):
        self.db = db
        self.config = config

    def get(self, user_id: str) -> Subscription | None:
        return self.db.query(Subscription).filter(Subscription.user_id == user_id).one_or_none()

    def get_by_processor_id(self, processor_subscription_id: str) -> Subscription | None:
        return (
            self.db.query(Subscription)
            .filter(Subscription.processor_subscription_id == processor_subscription_id)
            .one_or_none()
        )

    def effective_tier(self, user_id: str, now: datetime | None = None) -> Tier:
        """Tier the user is entitled to right now. Canceled keeps its tier until period end."""
        now = now or utcnow()
        sub = self.get(user_id)
        if sub is None:
            return Tier.FREE
        match SubscriptionStatus(sub.status):
            case SubscriptionStatus.ACTIVE:
                return Tier(sub.tier)
            case SubscriptionStatus.CANCELED:
                period_end = as_utc(sub.current_period_end)
                if period_end is not None and period_end > now:
                    return Tier(sub.tier)
                return Tier.FREE
            case _ as unreachable:
                assert_never(unreachable)

    def apply(self, verified: VerifiedPreapproval, now: datetime | None = None) -> Subscription | None:
        """Apply a verified agreement state. Returns the subscription row when it changed."""
        now = now or utcnow()
        match verified.status:
            case PreapprovalStatus.AUTHORIZED:
                return self.activate(verified, now)
            case PreapprovalStatus.CANCELLED:
                return self.cancel(verified, now)
            case PreapprovalStatus.PAUSED | PreapprovalStatus.OTHER:
                logger.info(
                    "subscription_unchanged",
                    extra={
                        "user_id": verified.user_id,
                        "processor_status": verified.raw_status,
                        "preapproval_id": verified.preapproval_id,
                    },
                )
                return None
            case _ as unreachable:
                assert_never(unreachable)

    def activate(self, verified: VerifiedPreapproval, now: datetime) -> Subscription:
        period_end = verified.next_payment_date or add_months(now, 1)
        values = {
            "user_id": verified.user_id,
            "tier": verified.tier.value,
            "status": SubscriptionStatus.ACTIVE.value,
            "current_period_start": now,
            "current_period_end": period_end,
            "payment_method": self.config.payment_method,
            "processor_subscription_id": verified.preapproval_id,
            "cancel_at_period_end": False,
            "canceled_at": None,
            "updated_at": now,
        }
        stmt = insert_for(self.db, Subscription).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={k: v for k, v in values.items() if k != "user_id"},
        )
        self.db.execute(stmt)
        self.db.flush()
        self.db.expire_all()
        logger.info(
            "subscription_activated",
            extra={
                "user_id": verified.user_id,
                "tier": verified.tier.value,
                "preapproval_id": verified.preapproval_id,
            },
        )
        return self.get(verified.user_id)

    def cancel(self, verified: VerifiedPreapproval, now: datetime) -> Subscription | None:
        """
        Grace period: status flips now, tier stays until expire_lapsed runs past period end.
        Only the agreement that backs the subscription can cancel it; a stale agreement
        left over from a previous plan change is ignored.
        """
        user_id = verified.user_id
        result = self.db.execute(
            update(Subscription)
            .where(
                Subscription.user_id == user_id,
                or_(
                    Subscription.processor_subscription_id == verified.preapproval_id,
                    Subscription.processor_subscription_id.is_(None),
                ),
            )
            .values(
                status=SubscriptionStatus.CANCELED.value,
                cancel_at_period_end=True,
                canceled_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.flush()
        self.db.expire_all()
        if result.rowcount == 0:
            logger.info("subscription_cancel_without_row", extra={"user_id": user_id})
            return None
        logger.info("subscription_canceled", extra={"user_id": user_id})
        return self.get(user_id)

    def renew(self, processor_subscription_id: str, now: datetime) -> Subscription | None:
        """A recurring charge went through: start a new period and reactivate."""
        sub = self.get_by_processor_id(processor_subscription_id)
        if sub is None or not Tier(sub.tier).is_paid:
            return None
        sub.status = SubscriptionStatus.ACTIVE.value
        sub.current_period_start = now
        sub.current_period_end = add_months(now, 1)
        sub.cancel_at_period_end = False
        sub.canceled_at = None
        sub.updated_at = now
        self.db.add(sub)
        self.db.flush()
        logger.info(
            "subscription_renewed",
            extra={"user_id": sub.user_id, "tier": sub.tier, "preapproval_id": processor_subscription_id},
        )
        return sub

    def expire_lapsed(self, now: datetime | None = None) -> int:
        """Downgrade canceled subscriptions whose paid period is over. Returns affected rows."""
        now = now or utcnow()
        result = self.db.execute(
            update(Subscription)
            .where(
                Subscription.status == SubscriptionStatus.CANCELED.value,
                Subscription.tier != Tier.FREE.value,
                Subscription.current_period_end <= now,
            )
            .values(tier=Tier.FREE.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.flush()
        return result.rowcount
