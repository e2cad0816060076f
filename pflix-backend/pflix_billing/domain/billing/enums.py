import enum


class Plan(enum.Enum):
    basic = "BASIC"
    duo = "DUO"


class SubscriptionStatus(enum.Enum):
    pending = "PENDING"
    active = "ACTIVE"
    overdue = "OVERDUE"
    canceled = "CANCELED"
    expired = "EXPIRED"


class BillingType(enum.Enum):
    pix = "PIX"
    boleto = "BOLETO"
    credit_card = "CREDIT_CARD"


class PixPaymentStatus(enum.Enum):
    pending = "PENDING"
    paid = "PAID"
    expired = "EXPIRED"


class GatewayOutcome(enum.Enum):
    paid = "paid"
    overdue = "overdue"
    canceled = "canceled"
    expired = "expired"
    other = "other"


class WebhookAction(enum.Enum):
    paid = "paid"
    already_paid = "already_paid"
    value_mismatch = "value_mismatch"
    expired = "expired"
    overdue = "overdue"
    canceled = "canceled"
    ignored = "ignored"
    not_found = "not_found"
