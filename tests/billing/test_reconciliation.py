"""Tests for ReconciliationService - both entry points end to end on SQLite."""
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from wardrobe_billing.models.payment_transaction import PaymentTransaction
from wardrobe_billing.models.subscription import Subscription
from wardrobe_billing.models.usage_metrics import UsageMetrics
from wardrobe_billing.services.billing.enums import SubscriptionStatus, Tier, TransactionStatus
from wardrobe_billing.services.billing.errors import (
    AmountMismatchError,
    AuthenticationError,
    CurrencyMismatchError,
    ExternalServiceError,
    ForbiddenReferenceError,
    MissingPreapprovalError,
    StorageError,
)
from wardrobe_billing.services.credits.service import CreditLedgerService
from wardrobe_billing.services.ledger.service import PaymentLedgerService
from wardrobe_billing.services.reconciliation.service import ReconciliationService


@pytest.fixture
def service(db, processor, config):
    return ReconciliationService(db, processor, config)


def _seed_ledger(db, external_reference, preapproval_id, user_id="u1"):
    PaymentLedgerService(db).record_attempt(
        external_reference,
        user_id,
        Decimal("2999"),
        "ARS",
        TransactionStatus.PENDING,
        metadata={"preapproval_id": preapproval_id},
    )
    db.commit()


def _counts(db):
    return (
        db.query(Subscription).count(),
        db.query(PaymentTransaction).count(),
        db.query(UsageMetrics).count(),
    )


class TestReturnPath:
    def test_activates_and_resets_usage(self, db, processor, config, service):
        CreditLedgerService(db, config).increment_usage("u1", amount=150)
        processor.add_preapproval("pre-1", "u1_pro_1")
        _seed_ledger(db, "u1_pro_1", "pre-1")

        result = service.reconcile_return("u1_pro_1", "u1")

        assert result.as_dict() == {"ok": True, "status": "authorized"}
        sub = db.query(Subscription).filter_by(user_id="u1").one()
        assert sub.tier == Tier.PRO
        assert sub.status == SubscriptionStatus.ACTIVE
        status = CreditLedgerService(db, config).get_status("u1")
        assert (status.used, status.limit) == (0, 300)
        tx = PaymentLedgerService(db).get("u1_pro_1")
        assert tx.status == TransactionStatus.APPROVED
        assert tx.meta["preapproval_id"] == "pre-1"
        assert tx.meta["processed_via"] == "user_return"

    def test_replay_is_idempotent(self, db, processor, config, service):
        processor.add_preapproval("pre-1", "u1_pro_1")
        _seed_ledger(db, "u1_pro_1", "pre-1")
        service.reconcile_return("u1_pro_1", "u1")
        CreditLedgerService(db, config).increment_usage("u1", amount=7)
        calls_before = len(processor.calls)

        result = service.reconcile_return("u1_pro_1", "u1")

        assert result.as_dict() == {"ok": True, "idempotent": True}
        assert len(processor.calls) == calls_before
        assert CreditLedgerService(db, config).get_status("u1").used == 7

    def test_webhook_then_return_is_idempotent(self, db, processor, config, service):
        processor.add_preapproval("pre-1", "u1_pro_1")
        service.reconcile_preapproval("pre-1")
        CreditLedgerService(db, config).increment_usage("u1", amount=3)

        assert service.reconcile_return("u1_pro_1", "u1").idempotent is True
        assert CreditLedgerService(db, config).get_status("u1").used == 3
        assert db.query(PaymentTransaction).count() == 1

    def test_preapproval_found_by_search(self, db, processor, service):
        processor.add_preapproval("pre-7", "u1_premium_1", amount=4999)

        service.reconcile_return("u1_premium_1", "u1")

        assert ("search_preapproval_id", "u1_premium_1") in processor.calls
        assert db.query(Subscription).filter_by(user_id="u1").one().tier == Tier.PREMIUM

    def test_missing_preapproval(self, db, service):
        with pytest.raises(MissingPreapprovalError):
            service.reconcile_return("u1_pro_1", "u1")
        assert _counts(db) == (0, 0, 0)

    def test_other_users_reference_is_forbidden_without_writes(self, db, processor, service):
        processor.add_preapproval("pre-1", "victim_premium_1", amount=4999)
        _seed_ledger(db, "victim_premium_1", "pre-1", user_id="victim")
        before = _counts(db)

        with pytest.raises(ForbiddenReferenceError):
            service.reconcile_return("victim_premium_1", "attacker")

        assert _counts(db) == before
        assert processor.calls == []
        assert PaymentLedgerService(db).get("victim_premium_1").status == TransactionStatus.PENDING

    def test_missing_caller(self, service):
        with pytest.raises(AuthenticationError):
            service.reconcile_return("u1_pro_1", None)

    def test_amount_tamper_changes_nothing(self, db, processor, service):
        processor.add_preapproval("pre-1", "u1_premium_1", amount=2999)
        _seed_ledger(db, "u1_premium_1", "pre-1")
        before = _counts(db)

        with pytest.raises(AmountMismatchError):
            service.reconcile_return("u1_premium_1", "u1")

        assert _counts(db) == before
        assert PaymentLedgerService(db).get("u1_premium_1").status == TransactionStatus.PENDING

    def test_currency_tamper_changes_nothing(self, db, processor, service):
        processor.add_preapproval("pre-1", "u1_pro_1", currency="USD")
        _seed_ledger(db, "u1_pro_1", "pre-1")

        with pytest.raises(CurrencyMismatchError):
            service.reconcile_return("u1_pro_1", "u1")
        assert db.query(Subscription).count() == 0

    def test_processor_outage_changes_nothing(self, db, processor, service):
        processor.add_preapproval("pre-1", "u1_pro_1")
        _seed_ledger(db, "u1_pro_1", "pre-1")
        processor.fail = True

        with pytest.raises(ExternalServiceError):
            service.reconcile_return("u1_pro_1", "u1")
        assert db.query(Subscription).count() == 0
        assert PaymentLedgerService(db).get("u1_pro_1").status == TransactionStatus.PENDING

    def test_storage_failure_rolls_back(self, db, processor, service):
        processor.add_preapproval("pre-1", "u1_pro_1")
        _seed_ledger(db, "u1_pro_1", "pre-1")

        with patch.object(
            service.credits, "reset_for_tier", side_effect=OperationalError("UPDATE", {}, Exception("disk I/O"))
        ):
            with pytest.raises(StorageError):
                service.reconcile_return("u1_pro_1", "u1")

        assert db.query(Subscription).count() == 0
        assert PaymentLedgerService(db).get("u1_pro_1").status == TransactionStatus.PENDING


class TestWebhookPath:
    def test_cancel_keeps_tier_until_period_end(self, db, processor, service):
        processor.add_preapproval("pre-1", "u1_pro_1")
        service.reconcile_preapproval("pre-1")

        processor.add_preapproval("pre-1", "u1_pro_1", status="cancelled")
        result = service.reconcile_preapproval("pre-1")

        assert result.status == "cancelled"
        sub = db.query(Subscription).filter_by(user_id="u1").one()
        assert sub.status == SubscriptionStatus.CANCELED
        assert sub.tier == Tier.PRO
        assert service.subscriptions.effective_tier("u1") is Tier.PRO
        assert PaymentLedgerService(db).get("u1_pro_1").status == TransactionStatus.CANCELLED

    def test_cancel_replay_is_idempotent(self, db, processor, service):
        processor.add_preapproval("pre-1", "u1_pro_1")
        service.reconcile_preapproval("pre-1")
        processor.add_preapproval("pre-1", "u1_pro_1", status="cancelled")
        service.reconcile_preapproval("pre-1")

        assert service.reconcile_preapproval("pre-1").idempotent is True

    def test_reactivation_after_cancel(self, db, processor, config, service):
        processor.add_preapproval("pre-1", "u1_pro_1")
        service.reconcile_preapproval("pre-1")
        processor.add_preapproval("pre-1", "u1_pro_1", status="cancelled")
        service.reconcile_preapproval("pre-1")

        processor.add_preapproval("pre-1", "u1_pro_1", status="authorized")
        result = service.reconcile_preapproval("pre-1")

        assert result.idempotent is False
        sub = db.query(Subscription).filter_by(user_id="u1").one()
        assert sub.status == SubscriptionStatus.ACTIVE
        assert PaymentLedgerService(db).get("u1_pro_1").status == TransactionStatus.APPROVED

    def test_paused_is_recorded_without_subscription_change(self, db, processor, service):
        processor.add_preapproval("pre-1", "u1_pro_1", status="paused")

        result = service.reconcile_preapproval("pre-1")

        assert result.status == "paused"
        assert db.query(Subscription).count() == 0
        assert db.query(UsageMetrics).count() == 0
        assert PaymentLedgerService(db).get("u1_pro_1").status == TransactionStatus.PENDING


class TestRenewal:
    def _activate(self, processor, service):
        processor.add_preapproval("pre-1", "u1_pro_1")
        service.reconcile_preapproval("pre-1")

    def test_approved_charge_renews_and_resets(self, db, processor, config, service):
        self._activate(processor, service)
        CreditLedgerService(db, config).increment_usage("u1", amount=120)
        processor.authorized_payments["555"] = {
            "id": 555,
            "preapproval_id": "pre-1",
            "status": "approved",
            "transaction_amount": 2999,
            "currency_id": "ARS",
        }

        result = service.reconcile_authorized_payment("555")

        assert result.as_dict() == {"ok": True, "status": "approved"}
        assert CreditLedgerService(db, config).get_status("u1").used == 0
        tx = PaymentLedgerService(db).get("555")
        assert tx.status == TransactionStatus.APPROVED
        assert tx.user_id == "u1"

    def test_renewal_replay_does_not_reset_twice(self, db, processor, config, service):
        self._activate(processor, service)
        processor.authorized_payments["555"] = {
            "preapproval_id": "pre-1",
            "status": "approved",
            "transaction_amount": 2999,
            "currency_id": "ARS",
        }
        service.reconcile_authorized_payment("555")
        CreditLedgerService(db, config).increment_usage("u1", amount=9)

        assert service.reconcile_authorized_payment("555").idempotent is True
        assert CreditLedgerService(db, config).get_status("u1").used == 9

    def test_unapproved_charge_ignored(self, db, processor, service):
        self._activate(processor, service)
        processor.authorized_payments["556"] = {"preapproval_id": "pre-1", "status": "rejected"}

        assert service.reconcile_authorized_payment("556").as_dict() == {"ok": True, "ignored": True}
        assert PaymentLedgerService(db).get("556") is None

    def test_charge_for_unknown_agreement_ignored(self, db, processor, service):
        processor.authorized_payments["557"] = {
            "preapproval_id": "pre-404",
            "status": "approved",
            "transaction_amount": 2999,
        }
        assert service.reconcile_authorized_payment("557").ignored is True

    def test_tampered_charge_amount_rejected(self, db, processor, service):
        self._activate(processor, service)
        processor.authorized_payments["558"] = {
            "preapproval_id": "pre-1",
            "status": "approved",
            "transaction_amount": 1,
            "currency_id": "ARS",
        }
        with pytest.raises(AmountMismatchError):
            service.reconcile_authorized_payment("558")
        assert PaymentLedgerService(db).get("558") is None
