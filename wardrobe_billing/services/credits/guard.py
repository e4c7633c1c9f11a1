"""
Call-site guard for paid AI work.

Order: gate before the expensive call, charge only after it succeeded.
Credits pay for delivered results, so a failed generation costs nothing.
"""
import logging
from typing import Callable, TypeVar

from wardrobe_billing.services.billing.errors import QuotaExceededError
from wardrobe_billing.services.credits.service import CreditLedgerService
from wardrobe_billing.utils.metrics import quota_rejected_total

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CreditGuard:
    def __init__(self, credits: CreditLedgerService):
        self.credits = credits

    def run(self, user_id: str, work: Callable[[], T], amount: int = 1) -> T:
        """
        Run work() on the user's quota. Raises QuotaExceededError before starting when
        the month is used up; exceptions from work() propagate and nothing is charged.
        """
        if not self.credits.can_generate(user_id, amount):
            quota_rejected_total.labels(reason="limit_reached").inc()
            logger.info("generation_limit_reached", extra={"user_id": user_id})
            raise QuotaExceededError()

        result = work()

        if not self.credits.increment_usage(user_id, amount):
            # A concurrent request took the last credit while this one was generating.
            quota_rejected_total.labels(reason="lost_race").inc()
            logger.warning("credit_increment_lost_race", extra={"user_id": user_id})
        return result
