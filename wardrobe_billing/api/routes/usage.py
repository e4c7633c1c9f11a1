from fastapi import APIRouter, Depends

from wardrobe_billing.api.deps import get_credit_service
from wardrobe_billing.schemas.billing import UsageOut
from wardrobe_billing.services.auth.jwt import get_current_user_id
from wardrobe_billing.services.credits.service import CreditLedgerService

router = APIRouter(tags=["usage"])


@router.get("/usage", response_model=UsageOut)
def get_usage(
    user_id: str = Depends(get_current_user_id),
    credits: CreditLedgerService = Depends(get_credit_service),
) -> UsageOut:
    status = credits.get_status(user_id)
    return UsageOut(
        used=status.used,
        limit=status.limit,
        remaining=status.remaining,
        percent_used=status.percent_used,
        can_use=status.can_use,
        tier=status.tier.value,
        days_until_reset=status.days_until_reset,
    )
