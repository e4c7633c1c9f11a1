"""
PaymentLedgerService - append/upsert record of billing events.

Evidence, not authority: nothing here touches subscriptions or usage. Rows are keyed
by (provider, provider_transaction_id) and every write is an INSERT .. ON CONFLICT.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from wardrobe_billing.db.upsert import insert_for
from wardrobe_billing.models.payment_transaction import PaymentTransaction
from wardrobe_billing.services.billing.enums import TransactionStatus

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "mercadopago"


class PaymentLedgerService:
    def __init__(self, db: Session, provider: str = DEFAULT_PROVIDER):
        self.db = db
        self.provider = provider

    def get(self, external_id: str, provider: str | None = None) -> PaymentTransaction | None:
        return (
            self.db.query(PaymentTransaction)
            .filter(
                PaymentTransaction.provider == (provider or self.provider),
                PaymentTransaction.provider_transaction_id == external_id,
            )
            .one_or_none()
        )

    def record_attempt(
        self,
        external_id: str,
        user_id: str,
        amount: Decimal,
        currency: str,
        status: TransactionStatus,
        metadata: dict[str, Any] | None = None,
        description: str | None = None,
        provider: str | None = None,
    ) -> str:
        """
        Idempotent upsert of one billing event. Returns the transaction id.
        A second call with the same (provider, external_id) updates the row in place.
        Does not commit.
        """
        provider = provider or self.provider
        now = datetime.now(timezone.utc)
        values = {
            "user_id": user_id,
            "provider": provider,
            "provider_transaction_id": external_id,
            "amount": amount,
            "currency": currency,
            "status": TransactionStatus(status).value,
            "description": description,
            "meta": metadata or {},
            "updated_at": now,
        }
        stmt = insert_for(self.db, PaymentTransaction).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["provider", "provider_transaction_id"],
            set_={
                "amount": stmt.excluded.amount,
                "currency": stmt.excluded.currency,
                "status": stmt.excluded.status,
                "description": stmt.excluded.description,
                "meta": stmt.excluded.meta,
                "updated_at": now,
            },
        )
        self.db.execute(stmt)
        self.db.flush()
        self.db.expire_all()

        tx = self.get(external_id, provider)
        logger.info(
            "payment_transaction_recorded",
            extra={"user_id": user_id, "external_reference": external_id, "status": values["status"]},
        )
        return tx.id

    def claim(
        self,
        external_id: str,
        user_id: str,
        amount: Decimal,
        currency: str,
        metadata: dict[str, Any] | None = None,
        provider: str | None = None,
    ) -> PaymentTransaction:
        """
        Make sure a row exists (inserted as pending if absent) and lock it for the rest
        of the transaction. Concurrent reconciliations of the same event serialize here.
        """
        provider = provider or self.provider
        stmt = insert_for(self.db, PaymentTransaction).values(
            user_id=user_id,
            provider=provider,
            provider_transaction_id=external_id,
            amount=amount,
            currency=currency,
            status=TransactionStatus.PENDING.value,
            meta=metadata or {},
        )
        self.db.execute(stmt.on_conflict_do_nothing(index_elements=["provider", "provider_transaction_id"]))
        self.db.flush()
        return (
            self.db.query(PaymentTransaction)
            .filter(
                PaymentTransaction.provider == provider,
                PaymentTransaction.provider_transaction_id == external_id,
            )
            .populate_existing()
            .with_for_update()
            .one()
        )

    def is_already_approved(self, external_id: str, provider: str | None = None) -> bool:
        tx = self.get(external_id, provider)
        return tx is not None and tx.status == TransactionStatus.APPROVED

    def preapproval_id_for(self, external_id: str, provider: str | None = None) -> str | None:
        tx = self.get(external_id, provider)
        if tx is None:
            return None
        value = (tx.meta or {}).get("preapproval_id")
        return str(value) if value else None

