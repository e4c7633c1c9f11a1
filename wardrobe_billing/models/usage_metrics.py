"""
UsageMetrics - one row per user per calendar month.
A new month gets a new row; past rows are kept as history.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from wardrobe_billing.db.base import Base


class UsageMetrics(Base):
    __tablename__ = "usage_metrics"
    __table_args__ = (UniqueConstraint("user_id", "period_start", name="uq_usage_metrics_user_period"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    subscription_tier = Column(String, nullable=False)          # tier snapshot at period creation / reset
    generations_used = Column(Integer, nullable=False, default=0)
    generations_limit = Column(Integer, nullable=False)         # -1 = unlimited
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    last_reset = Column(DateTime(timezone=True), nullable=True)
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
