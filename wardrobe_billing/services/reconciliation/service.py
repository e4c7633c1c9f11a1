"""
ReconciliationService - the two entry points that turn processor state into entitlements.

Both paths run the same sequence:
  1. verify against the processor (outside any write)
  2. lock the ledger row for the billing event
  3. short-circuit if the event was already applied
  4. apply the subscription transition and reset usage on activation
  5. record the ledger row last, then commit once

A failure anywhere before commit leaves subscriptions, usage and ledger untouched.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wardrobe_billing.services.billing.config import BillingConfig
from wardrobe_billing.services.billing.enums import (
    PreapprovalStatus,
    ReconciliationSource,
    Tier,
    TransactionStatus,
)
from wardrobe_billing.services.billing.errors import (
    AuthenticationError,
    BillingError,
    MissingPreapprovalError,
    StorageError,
)
from wardrobe_billing.services.credits.service import CreditLedgerService
from wardrobe_billing.services.ledger.service import PaymentLedgerService
from wardrobe_billing.services.mercadopago.client import MercadoPagoClient
from wardrobe_billing.services.preapproval.verifier import (
    PreapprovalVerifier,
    VerifiedPreapproval,
    parse_reference,
)
from wardrobe_billing.services.subscriptions.service import SubscriptionService
from wardrobe_billing.utils.clock import utcnow
from wardrobe_billing.utils.metrics import reconciliations_total

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    ok: bool = True
    idempotent: bool = False
    status: str | None = None
    ignored: bool = False

    def as_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"ok": self.ok}
        if self.idempotent:
            body["idempotent"] = True
        if self.ignored:
            body["ignored"] = True
        if self.status is not None:
            body["status"] = self.status
        return body


def ledger_status_for(status: PreapprovalStatus) -> TransactionStatus:
    match status:
        case PreapprovalStatus.AUTHORIZED:
            return TransactionStatus.APPROVED
        case PreapprovalStatus.CANCELLED:
            return TransactionStatus.CANCELLED
        case _:
            return TransactionStatus.PENDING


class ReconciliationService:
    def __init__(
        self,
        db: Session,
        client: MercadoPagoClient,
        config: BillingConfig,
        *,
        verifier: PreapprovalVerifier | None = None,
        ledger: PaymentLedgerService | None = None,
        subscriptions: SubscriptionService | None = None,
        credits: CreditLedgerService | None = None,
    ):
        self.db = db
        self.client = client
        self.config = config
        self.verifier = verifier or PreapprovalVerifier(client, config)
        self.ledger = ledger or PaymentLedgerService(db, provider=config.provider)
        self.subscriptions = subscriptions or SubscriptionService(db, config)
        self.credits = credits or CreditLedgerService(db, config, self.subscriptions)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def reconcile_return(self, external_reference: str, caller_id: str | None) -> ReconciliationResult:
        """User came back from checkout. The caller may only reconcile their own reference."""
        source = ReconciliationSource.USER_RETURN
        try:
            if not caller_id:
                raise AuthenticationError()
            parse_reference(external_reference, caller_id)

            if self.ledger.is_already_approved(external_reference):
                return self._idempotent(source, external_reference)

            preapproval_id = self.ledger.preapproval_id_for(external_reference)
            if not preapproval_id:
                preapproval_id = self.client.search_preapproval_id(external_reference)
            if not preapproval_id:
                raise MissingPreapprovalError(detail={"external_reference": external_reference})

            verified = self.verifier.verify(external_reference, preapproval_id, caller_id)
            return self._apply(verified, source)
        except BillingError as e:
            self._rejected(source, e, external_reference=external_reference)
            raise

    def reconcile_preapproval(self, preapproval_id: str) -> ReconciliationResult:
        """Signed webhook for an agreement. The reference is taken from the processor record."""
        source = ReconciliationSource.WEBHOOK
        try:
            verified = self.verifier.verify_by_id(preapproval_id)
            return self._apply(verified, source)
        except BillingError as e:
            self._rejected(source, e, preapproval_id=preapproval_id)
            raise

    def reconcile_authorized_payment(self, payment_id: str) -> ReconciliationResult:
        """
        Signed webhook for one recurring charge. An approved charge on a paid agreement
        starts a new period and a fresh quota; anything else is acknowledged and ignored.
        """
        source = ReconciliationSource.WEBHOOK
        try:
            payload = self.client.get_authorized_payment(payment_id)
            preapproval_id = str(payload.get("preapproval_id") or "")
            charge_status = str(payload.get("status") or "").lower()
            if not preapproval_id or charge_status != TransactionStatus.APPROVED.value:
                return self._ignored(source, payment_id, charge_status)

            sub = self.subscriptions.get_by_processor_id(preapproval_id)
            if sub is None or not Tier(sub.tier).is_paid:
                return self._ignored(source, payment_id, charge_status)

            tier = Tier(sub.tier)
            currency, amount = self.verifier.check_economics(
                tier,
                payload.get("transaction_amount"),
                payload.get("currency_id"),
                preapproval_id=preapproval_id,
            )
            return self._apply_renewal(
                payment_id=str(payment_id),
                preapproval_id=preapproval_id,
                user_id=sub.user_id,
                tier=tier,
                amount=amount,
                currency=currency,
                source=source,
            )
        except BillingError as e:
            self._rejected(source, e, payment_id=payment_id)
            raise

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _apply(self, verified: VerifiedPreapproval, source: ReconciliationSource) -> ReconciliationResult:
        now = utcnow()
        target = ledger_status_for(verified.status)
        metadata = self._metadata(verified, source, now)
        try:
            row = self.ledger.claim(
                verified.external_reference,
                verified.user_id,
                verified.amount,
                verified.currency,
                metadata,
            )
            if target is not TransactionStatus.PENDING and row.status == target:
                self.db.commit()
                return self._idempotent(source, verified.external_reference)

            self.subscriptions.apply(verified, now)
            if verified.status is PreapprovalStatus.AUTHORIZED:
                self.credits.reset_for_tier(verified.user_id, verified.tier, now)

            self.ledger.record_attempt(
                verified.external_reference,
                verified.user_id,
                verified.amount,
                verified.currency,
                target,
                metadata=metadata,
                description=f"Subscription {verified.tier.value} (MercadoPago)",
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self._storage_failure(e, source, external_reference=verified.external_reference)

        reconciliations_total.labels(source=source.value, outcome=target.value).inc()
        logger.info(
            "reconciliation_applied",
            extra={
                "user_id": verified.user_id,
                "tier": verified.tier.value,
                "external_reference": verified.external_reference,
                "preapproval_id": verified.preapproval_id,
                "processor_status": verified.raw_status,
                "status": target.value,
                "source": source.value,
            },
        )
        return ReconciliationResult(status=verified.raw_status)

    def _apply_renewal(
        self,
        *,
        payment_id: str,
        preapproval_id: str,
        user_id: str,
        tier: Tier,
        amount: Decimal,
        currency: str,
        source: ReconciliationSource,
    ) -> ReconciliationResult:
        now = utcnow()
        metadata = {
            "preapproval_id": preapproval_id,
            "authorized_payment_id": payment_id,
            "processed_via": source.value,
            "processed_at": now.isoformat(),
        }
        try:
            row = self.ledger.claim(payment_id, user_id, amount, currency, metadata)
            if row.status == TransactionStatus.APPROVED:
                self.db.commit()
                return self._idempotent(source, payment_id)

            self.subscriptions.renew(preapproval_id, now)
            self.credits.reset_for_tier(user_id, tier, now)
            self.ledger.record_attempt(
                payment_id,
                user_id,
                amount,
                currency,
                TransactionStatus.APPROVED,
                metadata=metadata,
                description=f"Subscription {tier.value} renewal (MercadoPago)",
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self._storage_failure(e, source, payment_id=payment_id)

        reconciliations_total.labels(source=source.value, outcome="renewed").inc()
        logger.info(
            "subscription_renewal_applied",
            extra={"user_id": user_id, "tier": tier.value, "payment_id": payment_id, "preapproval_id": preapproval_id},
        )
        return ReconciliationResult(status=TransactionStatus.APPROVED.value)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _metadata(verified: VerifiedPreapproval, source: ReconciliationSource, now: datetime) -> dict[str, Any]:
        return {
            "external_reference": verified.external_reference,
            "preapproval_id": verified.preapproval_id,
            "preapproval_status": verified.raw_status,
            "next_payment_date": verified.next_payment_date.isoformat() if verified.next_payment_date else None,
            "processed_via": source.value,
            "processed_at": now.isoformat(),
        }

    def _storage_failure(self, error: SQLAlchemyError, source: ReconciliationSource, **context) -> None:
        self.db.rollback()
        reconciliations_total.labels(source=source.value, outcome="storage_error").inc()
        logger.exception("reconciliation_storage_error", extra={"source": source.value, **context})
        raise StorageError() from error

    def _idempotent(self, source: ReconciliationSource, key: str) -> ReconciliationResult:
        reconciliations_total.labels(source=source.value, outcome="idempotent").inc()
        logger.info("reconciliation_idempotent", extra={"source": source.value, "external_reference": key})
        return ReconciliationResult(idempotent=True)

    def _ignored(self, source: ReconciliationSource, payment_id: str, charge_status: str) -> ReconciliationResult:
        reconciliations_total.labels(source=source.value, outcome="ignored").inc()
        logger.info(
            "authorized_payment_ignored",
            extra={"source": source.value, "payment_id": payment_id, "processor_status": charge_status},
        )
        return ReconciliationResult(ignored=True)

    @staticmethod
    def _rejected(source: ReconciliationSource, error: BillingError, **context) -> None:
        if isinstance(error, StorageError):
            return
        reconciliations_total.labels(source=source.value, outcome=error.code).inc()
        logger.warning(
            "reconciliation_rejected",
            extra={"source": source.value, "status_code": error.status_code, "error": error.code, **context},
        )
