from wardrobe_billing.models.payment_transaction import PaymentTransaction
from wardrobe_billing.models.subscription import Subscription
from wardrobe_billing.models.usage_metrics import UsageMetrics

__all__ = ["PaymentTransaction", "Subscription", "UsageMetrics"]
