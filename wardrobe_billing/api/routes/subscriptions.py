"""
User-facing subscription routes.
The return endpoint is the fallback for a delayed or lost webhook: the browser lands
here after checkout and asks the engine to reconcile its own reference.
"""
from fastapi import APIRouter, Depends

from wardrobe_billing.api.deps import get_reconciliation_service, get_subscription_service
from wardrobe_billing.api.routes.errors import internal_error, to_http
from wardrobe_billing.schemas.billing import ReconcileOut, ReturnReconcileIn, SubscriptionOut
from wardrobe_billing.services.auth.jwt import get_current_user_id
from wardrobe_billing.services.billing.enums import Tier
from wardrobe_billing.services.billing.errors import BillingError
from wardrobe_billing.services.reconciliation.service import ReconciliationService
from wardrobe_billing.services.subscriptions.service import SubscriptionService
from wardrobe_billing.utils.clock import as_utc

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.post("/mercadopago/return", response_model=ReconcileOut, response_model_exclude_none=True)
def reconcile_return(
    body: ReturnReconcileIn | None = None,
    user_id: str = Depends(get_current_user_id),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> dict:
    body = body or ReturnReconcileIn()
    try:
        result = service.reconcile_return(body.external_reference, user_id)
    except BillingError as e:
        raise to_http(e)
    except Exception:
        raise internal_error("reconcile_return_error", user_id=user_id, external_reference=body.external_reference)
    return result.as_dict()


@router.get("/me", response_model=SubscriptionOut)
def get_my_subscription(
    user_id: str = Depends(get_current_user_id),
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionOut:
    sub = service.get(user_id)
    effective = service.effective_tier(user_id)
    if sub is None:
        return SubscriptionOut(tier=Tier.FREE.value, effective_tier=effective.value)
    period_start = as_utc(sub.current_period_start)
    period_end = as_utc(sub.current_period_end)
    return SubscriptionOut(
        tier=sub.tier,
        effective_tier=effective.value,
        status=sub.status,
        current_period_start=period_start.isoformat() if period_start else None,
        current_period_end=period_end.isoformat() if period_end else None,
        cancel_at_period_end=bool(sub.cancel_at_period_end),
    )
