"""
CreditLedgerService - monthly AI-generation quota per user.

One UsageMetrics row per user per calendar month. The quota gate is a single
conditional UPDATE, so two concurrent requests can never both take the last credit.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from wardrobe_billing.db.upsert import insert_for
from wardrobe_billing.models.usage_metrics import UsageMetrics
from wardrobe_billing.services.billing.config import UNLIMITED, BillingConfig
from wardrobe_billing.services.billing.enums import Tier
from wardrobe_billing.services.billing.errors import InvalidAmountError
from wardrobe_billing.services.subscriptions.service import SubscriptionService
from wardrobe_billing.utils.clock import as_utc, month_bounds, utcnow
from wardrobe_billing.utils.metrics import credits_consumed_total

logger = logging.getLogger(__name__)


@dataclass
class CreditStatus:
    used: int
    limit: int
    remaining: int
    percent_used: float
    can_use: bool
    tier: Tier
    days_until_reset: int


def has_room(used: int, limit: int, amount: int = 1) -> bool:
    return limit == UNLIMITED or used + amount <= limit


def check_amount(amount: int) -> int:
    """generations_used only grows: zero or negative charges are refused."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
        raise InvalidAmountError(detail={"amount": amount})
    return amount


class CreditLedgerService:
    def __init__(
        self,
        db: Session,
        config: BillingConfig,
        subscriptions: SubscriptionService | None = None,
    ):
        self.db = db
        self.config = config
        self.subscriptions = subscriptions or SubscriptionService(db, config)

    def current_period(self, user_id: str, now: datetime | None = None) -> UsageMetrics:
        """
        Row for the calendar month containing now. Created on first touch with the
        limit of the user's effective tier; last month's row is left as history.
        Does not commit.
        """
        now = now or utcnow()
        period_start, period_end = month_bounds(now)
        row = self._get_period(user_id, period_start)
        if row is not None:
            return row

        tier = self.subscriptions.effective_tier(user_id, now)
        stmt = insert_for(self.db, UsageMetrics).values(
            user_id=user_id,
            subscription_tier=tier.value,
            generations_used=0,
            generations_limit=self.config.limit_for(tier),
            period_start=period_start,
            period_end=period_end,
            last_reset=now,
        )
        self.db.execute(stmt.on_conflict_do_nothing(index_elements=["user_id", "period_start"]))
        self.db.flush()
        logger.info("usage_period_opened", extra={"user_id": user_id, "tier": tier.value})
        return self._get_period(user_id, period_start, refresh=True)

    def can_generate(self, user_id: str, amount: int = 1, now: datetime | None = None) -> bool:
        check_amount(amount)
        row = self.current_period(user_id, now)
        self.db.commit()
        return has_room(row.generations_used, row.generations_limit, amount)

    def increment_usage(self, user_id: str, amount: int = 1, now: datetime | None = None) -> bool:
        """
        Charge amount credits iff they still fit. False means the limit was reached,
        possibly by a concurrent request since can_generate. Commits.
        """
        check_amount(amount)
        now = now or utcnow()
        row = self.current_period(user_id, now)
        tier = row.subscription_tier
        period_start, _ = month_bounds(now)
        result = self.db.execute(
            update(UsageMetrics)
            .where(
                UsageMetrics.user_id == user_id,
                UsageMetrics.period_start == period_start,
                or_(
                    UsageMetrics.generations_limit == UNLIMITED,
                    UsageMetrics.generations_used + amount <= UsageMetrics.generations_limit,
                ),
            )
            .values(
                generations_used=UsageMetrics.generations_used + amount,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        charged = result.rowcount > 0
        self.db.commit()
        if charged:
            credits_consumed_total.labels(tier=tier).inc(amount)
        else:
            logger.info("credit_increment_rejected", extra={"user_id": user_id, "tier": tier})
        return charged

    def reset_for_tier(self, user_id: str, tier: Tier, now: datetime | None = None) -> UsageMetrics:
        """Fresh quota for the current month after an upgrade or renewal. Does not commit."""
        now = now or utcnow()
        period_start, period_end = month_bounds(now)
        values = {
            "user_id": user_id,
            "subscription_tier": tier.value,
            "generations_used": 0,
            "generations_limit": self.config.limit_for(tier),
            "period_start": period_start,
            "period_end": period_end,
            "last_reset": now,
            "updated_at": now,
        }
        stmt = insert_for(self.db, UsageMetrics).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "period_start"],
            set_={
                "subscription_tier": values["subscription_tier"],
                "generations_used": 0,
                "generations_limit": values["generations_limit"],
                "period_end": period_end,
                "last_reset": now,
                "updated_at": now,
            },
        )
        self.db.execute(stmt)
        self.db.flush()
        logger.info(
            "usage_reset",
            extra={"user_id": user_id, "tier": tier.value, "count": values["generations_limit"]},
        )
        return self._get_period(user_id, period_start, refresh=True)

    def get_status(self, user_id: str, now: datetime | None = None) -> CreditStatus:
        now = now or utcnow()
        row = self.current_period(user_id, now)
        self.db.commit()
        used = row.generations_used
        limit = row.generations_limit
        if limit == UNLIMITED:
            remaining = UNLIMITED
            percent_used = 0.0
        else:
            remaining = max(0, limit - used)
            percent_used = round(min(100.0, used / limit * 100), 1) if limit > 0 else 100.0
        period_end = as_utc(row.period_end)
        days_until_reset = max(0, math.ceil((period_end - now).total_seconds() / 86400))
        return CreditStatus(
            used=used,
            limit=limit,
            remaining=remaining,
            percent_used=percent_used,
            can_use=has_room(used, limit),
            tier=Tier(row.subscription_tier),
            days_until_reset=days_until_reset,
        )

    def _get_period(self, user_id: str, period_start: datetime, refresh: bool = False) -> UsageMetrics | None:
        query = self.db.query(UsageMetrics).filter(
            UsageMetrics.user_id == user_id,
            UsageMetrics.period_start == period_start,
        )
        if refresh:
            query = query.populate_existing()
            return query.one()
        return query.one_or_none()
