"""
PreapprovalVerifier - fetch the processor's own record of a recurring agreement and
check it against the caller's claim before anything acts on it.

The only unverified input is the external reference "{user_id}_{tier}[_{suffix}]".
The processor record is ground truth: its reference, currency and amount must match
the claim and the configured plan exactly. Any mismatch rejects the whole event.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from wardrobe_billing.services.billing.config import BillingConfig
from wardrobe_billing.services.billing.enums import PAID_TIERS, PreapprovalStatus, Tier
from wardrobe_billing.services.billing.errors import (
    AmountMismatchError,
    CurrencyMismatchError,
    ForbiddenReferenceError,
    InvalidReferenceError,
    ReferenceMismatchError,
)
from wardrobe_billing.services.mercadopago.client import MercadoPagoClient
from wardrobe_billing.utils.clock import parse_processor_datetime
from wardrobe_billing.utils.metrics import verification_rejections_total

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParsedReference:
    user_id: str
    tier: Tier


@dataclass(frozen=True)
class VerifiedPreapproval:
    user_id: str
    tier: Tier
    external_reference: str
    preapproval_id: str
    status: PreapprovalStatus
    raw_status: str
    next_payment_date: datetime | None
    amount: Decimal
    currency: str


def parse_reference(external_reference: str, caller_id: str | None = None) -> ParsedReference:
    """
    Split "{user_id}_{tier}". A trailing "_{suffix}" (checkout timestamp) is ignored.
    caller_id=None means the caller is the processor itself (signed webhook).
    """
    if not external_reference:
        verification_rejections_total.labels(reason="invalid_reference").inc()
        raise InvalidReferenceError("Missing external_reference")
    parts = external_reference.split("_")
    user_id = parts[0].strip() if parts else ""
    raw_tier = parts[1].strip() if len(parts) > 1 else ""
    try:
        tier = Tier(raw_tier)
    except ValueError:
        tier = None
    if not user_id or tier not in PAID_TIERS:
        verification_rejections_total.labels(reason="invalid_reference").inc()
        raise InvalidReferenceError(detail={"external_reference": external_reference})

    if caller_id is not None and user_id != caller_id:
        verification_rejections_total.labels(reason="identity_mismatch").inc()
        logger.warning(
            "reconciliation_identity_mismatch",
            extra={"caller_id": caller_id, "user_id": user_id, "external_reference": external_reference},
        )
        raise ForbiddenReferenceError()

    return ParsedReference(user_id=user_id, tier=tier)


class PreapprovalVerifier:
    def __init__(self, client: MercadoPagoClient, config: BillingConfig):
        self.client = client
        self.config = config

    def verify(self, external_reference: str, preapproval_id: str, caller_id: str | None = None) -> VerifiedPreapproval:
        """User-return path: the claim comes first, then the processor record must back it."""
        parsed = parse_reference(external_reference, caller_id)
        payload = self.client.get_preapproval(preapproval_id)
        return self._validate(parsed, external_reference, preapproval_id, payload)

    def verify_by_id(self, preapproval_id: str) -> VerifiedPreapproval:
        """Webhook path: only the agreement id is known; the reference comes from the processor."""
        payload = self.client.get_preapproval(preapproval_id)
        external_reference = str(payload.get("external_reference") or "")
        parsed = parse_reference(external_reference)
        return self._validate(parsed, external_reference, preapproval_id, payload)

    def _validate(
        self,
        parsed: ParsedReference,
        external_reference: str,
        preapproval_id: str,
        payload: dict[str, Any],
    ) -> VerifiedPreapproval:
        processor_reference = str(payload.get("external_reference") or "")
        if processor_reference != external_reference:
            verification_rejections_total.labels(reason="reference_mismatch").inc()
            logger.warning(
                "preapproval_reference_mismatch",
                extra={
                    "external_reference": external_reference,
                    "got": processor_reference,
                    "preapproval_id": preapproval_id,
                },
            )
            raise ReferenceMismatchError()

        recurring = payload.get("auto_recurring") or {}
        currency, expected_amount = self.check_economics(
            parsed.tier,
            recurring.get("transaction_amount"),
            recurring.get("currency_id"),
            external_reference=external_reference,
            preapproval_id=preapproval_id,
        )

        raw_status = str(payload.get("status") or "")
        return VerifiedPreapproval(
            user_id=parsed.user_id,
            tier=parsed.tier,
            external_reference=external_reference,
            preapproval_id=str(preapproval_id),
            status=PreapprovalStatus.from_processor(raw_status),
            raw_status=raw_status,
            next_payment_date=parse_processor_datetime(payload.get("next_payment_date")),
            amount=expected_amount,
            currency=currency,
        )

    def check_economics(
        self,
        tier: Tier,
        raw_amount: Any,
        raw_currency: Any,
        external_reference: str | None = None,
        preapproval_id: str | None = None,
    ) -> tuple[str, Decimal]:
        """Currency and amount must equal the configured plan exactly. Returns (currency, price)."""
        currency = str(raw_currency or self.config.currency).upper()
        if currency != self.config.currency:
            verification_rejections_total.labels(reason="currency_mismatch").inc()
            logger.error(
                "preapproval_currency_mismatch",
                extra={
                    "expected": self.config.currency,
                    "got": currency,
                    "external_reference": external_reference,
                    "preapproval_id": preapproval_id,
                },
            )
            raise CurrencyMismatchError()

        expected_amount = self.config.price_for(tier)
        amount = _to_decimal(raw_amount)
        if amount != expected_amount:
            verification_rejections_total.labels(reason="amount_mismatch").inc()
            logger.error(
                "preapproval_amount_mismatch",
                extra={
                    "expected": str(expected_amount),
                    "got": str(amount),
                    "tier": tier.value,
                    "external_reference": external_reference,
                    "preapproval_id": preapproval_id,
                },
            )
            raise AmountMismatchError()

        return currency, expected_amount


def _to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")
