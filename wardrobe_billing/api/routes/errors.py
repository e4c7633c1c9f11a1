import logging

from fastapi import HTTPException

from wardrobe_billing.services.billing.errors import BillingError

logger = logging.getLogger(__name__)


def to_http(error: BillingError) -> HTTPException:
    """Public message only; detail stays in the logs."""
    return HTTPException(status_code=error.status_code, detail=error.message)


def internal_error(event: str, **context) -> HTTPException:
    logger.exception(event, extra=context)
    return HTTPException(status_code=500, detail="Internal server error")
