"""
Billing config - typed snapshot of wardrobe_billing.core.config.settings.

Services receive a BillingConfig in their constructor instead of reading the global
settings, so prices and limits can be overridden per handler (and per test).
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal

from wardrobe_billing.services.billing.enums import PAID_TIERS, Tier

DEFAULT_PRICES = {Tier.PRO: Decimal("2999"), Tier.PREMIUM: Decimal("4999")}
DEFAULT_LIMITS = {Tier.FREE: 200, Tier.PRO: 300, Tier.PREMIUM: 400}
UNLIMITED = -1


def parse_prices(raw: str) -> dict[Tier, Decimal]:
    data = json.loads(raw)
    return {Tier(k): Decimal(str(v)) for k, v in data.items() if Tier(k) in PAID_TIERS}


def parse_limits(raw: str) -> dict[Tier, int]:
    data = json.loads(raw)
    return {Tier(k): int(v) for k, v in data.items()}


@dataclass(frozen=True)
class BillingConfig:
    provider: str = "mercadopago"
    currency: str = "ARS"
    prices: dict[Tier, Decimal] = field(default_factory=lambda: dict(DEFAULT_PRICES))
    limits: dict[Tier, int] = field(default_factory=lambda: dict(DEFAULT_LIMITS))
    payment_method: str = "mercadopago_credit_card"

    @classmethod
    def from_settings(cls, settings) -> BillingConfig:
        limits = dict(DEFAULT_LIMITS)
        limits.update(parse_limits(settings.generation_limits))
        prices = dict(DEFAULT_PRICES)
        prices.update(parse_prices(settings.plan_prices))
        return cls(
            provider=settings.billing_provider,
            currency=settings.billing_currency,
            prices=prices,
            limits=limits,
        )

    def price_for(self, tier: Tier) -> Decimal:
        return self.prices[tier]

    def limit_for(self, tier: Tier) -> int:
        return self.limits.get(tier, self.limits[Tier.FREE])
