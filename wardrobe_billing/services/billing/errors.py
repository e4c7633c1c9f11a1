"""
Error taxonomy for reconciliation and the quota gate.

Every error carries the HTTP status the entry points answer with and a message that
is safe to show to the caller. Internal detail goes to the logs, never into message.
"""
from typing import Any


class BillingError(Exception):
    status_code = 500
    code = "billing_error"

    def __init__(self, message: str | None = None, detail: dict[str, Any] | None = None):
        self.message = message or self.default_message()
        super().__init__(self.message)
        self.detail = detail or {}

    @classmethod
    def default_message(cls) -> str:
        return "Billing error"


class AuthenticationError(BillingError):
    status_code = 401
    code = "unauthorized"

    @classmethod
    def default_message(cls) -> str:
        return "Unauthorized"


class AuthorizationError(BillingError):
    status_code = 403
    code = "forbidden"

    @classmethod
    def default_message(cls) -> str:
        return "Forbidden"


class ForbiddenReferenceError(AuthorizationError):
    """external_reference belongs to another user."""

    code = "reference_identity_mismatch"


class ValidationError(BillingError):
    status_code = 400
    code = "invalid_request"

    @classmethod
    def default_message(cls) -> str:
        return "Invalid request"


class InvalidReferenceError(ValidationError):
    code = "invalid_reference"

    @classmethod
    def default_message(cls) -> str:
        return "Invalid external_reference format"


class ReferenceMismatchError(ValidationError):
    code = "reference_mismatch"

    @classmethod
    def default_message(cls) -> str:
        return "external_reference mismatch"


class MissingPreapprovalError(ValidationError):
    code = "missing_preapproval"

    @classmethod
    def default_message(cls) -> str:
        return "Missing preapproval_id for external_reference"


class InvalidAmountError(ValidationError):
    """Credits are charged in whole positive units."""

    code = "invalid_amount"

    @classmethod
    def default_message(cls) -> str:
        return "Credit amount must be a positive integer"


class IntegrityMismatchError(BillingError):
    """Processor economics disagree with the configured plan: tampering or pricing drift."""

    status_code = 400
    code = "integrity_mismatch"


class CurrencyMismatchError(IntegrityMismatchError):
    code = "currency_mismatch"

    @classmethod
    def default_message(cls) -> str:
        return "Currency mismatch"


class AmountMismatchError(IntegrityMismatchError):
    code = "amount_mismatch"

    @classmethod
    def default_message(cls) -> str:
        return "Amount mismatch"


class ExternalServiceError(BillingError):
    """Processor unreachable or answered non-2xx. Nothing was written; retry is safe."""

    status_code = 400
    code = "verification_unavailable"

    @classmethod
    def default_message(cls) -> str:
        return "Could not verify the subscription with the payment processor"


class StorageError(BillingError):
    status_code = 500
    code = "storage_error"

    @classmethod
    def default_message(cls) -> str:
        return "Could not store the billing update"


class QuotaExceededError(BillingError):
    status_code = 402
    code = "limit_reached"

    @classmethod
    def default_message(cls) -> str:
        return "You reached your monthly AI generation limit. Upgrade your plan to continue."
