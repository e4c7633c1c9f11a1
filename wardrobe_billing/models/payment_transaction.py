"""
PaymentTransaction - audit trail of every billing event seen from the processor.
(provider, provider_transaction_id) is unique; rows are upserted, never deleted.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Numeric, String, UniqueConstraint

from wardrobe_billing.db.base import Base, JsonType


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"
    __table_args__ = (
        UniqueConstraint("provider", "provider_transaction_id", name="uq_payment_transactions_provider_tx"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False)                       # "mercadopago"
    provider_transaction_id = Column(String, nullable=False, index=True)  # external_reference / authorized payment id
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String, nullable=False, default="ARS")
    status = Column(String, nullable=False, default="pending")      # pending / approved / cancelled
    description = Column(String, nullable=True)
    meta = Column(JsonType, nullable=False, default=dict)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
