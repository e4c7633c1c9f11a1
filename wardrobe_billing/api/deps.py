"""
FastAPI dependencies that assemble services per request.
Every service gets its session, the processor client and a BillingConfig explicitly.
"""
from functools import lru_cache
from typing import Iterator

from fastapi import Depends
from sqlalchemy.orm import Session

from wardrobe_billing.core.config import settings
from wardrobe_billing.db.session import get_db
from wardrobe_billing.services.billing.config import BillingConfig
from wardrobe_billing.services.circuit_breaker import get_circuit_breaker
from wardrobe_billing.services.credits.service import CreditLedgerService
from wardrobe_billing.services.mercadopago.client import MercadoPagoClient
from wardrobe_billing.services.reconciliation.service import ReconciliationService
from wardrobe_billing.services.subscriptions.service import SubscriptionService


@lru_cache
def get_billing_config() -> BillingConfig:
    return BillingConfig.from_settings(settings)


def get_mercadopago_client() -> Iterator[MercadoPagoClient]:
    client = MercadoPagoClient(
        access_token=settings.mercadopago_access_token,
        api_base=settings.mercadopago_api_base,
        timeout=settings.mercadopago_timeout,
        breaker=get_circuit_breaker("mercadopago"),
    )
    try:
        yield client
    finally:
        client.close()


def get_reconciliation_service(
    db: Session = Depends(get_db),
    client: MercadoPagoClient = Depends(get_mercadopago_client),
    config: BillingConfig = Depends(get_billing_config),
) -> ReconciliationService:
    return ReconciliationService(db, client, config)


def get_subscription_service(
    db: Session = Depends(get_db),
    config: BillingConfig = Depends(get_billing_config),
) -> SubscriptionService:
    return SubscriptionService(db, config)


def get_credit_service(
    db: Session = Depends(get_db),
    config: BillingConfig = Depends(get_billing_config),
) -> CreditLedgerService:
    return CreditLedgerService(db, config)
