"""
MercadoPago notifications.

The notification body is only a pointer ({type, data: {id}}); every decision is made
on the processor record fetched by id. Authentication is the shared URL token and/or
the x-signature HMAC, whichever are configured.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from wardrobe_billing.api.deps import get_reconciliation_service
from wardrobe_billing.api.routes.errors import internal_error, to_http
from wardrobe_billing.core.config import settings
from wardrobe_billing.schemas.billing import WebhookNotificationIn
from wardrobe_billing.services.billing.errors import BillingError
from wardrobe_billing.services.mercadopago.signature import WebhookAuthError, verify_webhook
from wardrobe_billing.services.reconciliation.service import ReconciliationService
from wardrobe_billing.utils.metrics import webhook_auth_failures_total

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

PREAPPROVAL_TOPICS = frozenset({"preapproval", "subscription_preapproval"})
AUTHORIZED_PAYMENT_TOPICS = frozenset({"subscription_authorized_payment"})


def _data_id(request: Request, payload: WebhookNotificationIn) -> str | None:
    # New-style notifications carry data.id in the query, legacy ones ?id=.
    query_id = request.query_params.get("data.id") or request.query_params.get("id")
    if query_id:
        return query_id
    if payload.data is not None and payload.data.id:
        return payload.data.id
    return None


def authenticate_webhook(request: Request, payload: WebhookNotificationIn) -> None:
    try:
        checked = verify_webhook(
            token_setting=settings.mercadopago_webhook_token,
            secret_setting=settings.mercadopago_webhook_secret,
            provided_token=request.query_params.get("token"),
            signature_header=request.headers.get("x-signature"),
            request_id=request.headers.get("x-request-id"),
            data_id=_data_id(request, payload),
            tolerance_seconds=settings.webhook_signature_tolerance_seconds,
        )
    except WebhookAuthError as e:
        webhook_auth_failures_total.labels(reason=e.reason).inc()
        logger.warning("webhook_auth_failed", extra={"error": e.reason, "path": request.url.path})
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not checked:
        if settings.app_env == "production":
            webhook_auth_failures_total.labels(reason="not_configured").inc()
            logger.error("webhook_auth_not_configured", extra={"path": request.url.path})
            raise HTTPException(status_code=401, detail="Unauthorized")
        logger.warning("webhook_unauthenticated_accepted", extra={"path": request.url.path})


@router.post("/mercadopago")
def mercadopago_webhook(
    request: Request,
    payload: WebhookNotificationIn,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> dict:
    authenticate_webhook(request, payload)

    topic = payload.type or request.query_params.get("type") or request.query_params.get("topic") or ""
    data_id = _data_id(request, payload)

    if topic not in PREAPPROVAL_TOPICS and topic not in AUTHORIZED_PAYMENT_TOPICS:
        logger.info("webhook_topic_not_handled", extra={"source": topic})
        return {"message": "Event type not handled"}
    if not data_id:
        raise HTTPException(status_code=400, detail="Missing data.id")

    try:
        if topic in PREAPPROVAL_TOPICS:
            result = service.reconcile_preapproval(data_id)
        else:
            result = service.reconcile_authorized_payment(data_id)
    except BillingError as e:
        raise to_http(e)
    except Exception:
        raise internal_error("webhook_processing_error", source=topic, preapproval_id=data_id)
    return result.as_dict()
