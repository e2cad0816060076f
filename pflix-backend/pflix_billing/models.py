from pflix_billing.domain.accounts.models import User
from pflix_billing.domain.billing.enums import BillingType, PixPaymentStatus, Plan, SubscriptionStatus
from pflix_billing.domain.billing.models import Payment, PixPayment, Subscription

__all__ = [
    "BillingType",
    "PixPaymentStatus",
    "Plan",
    "SubscriptionStatus",
    "User",
    "Subscription",
    "Payment",
    "PixPayment",
]
