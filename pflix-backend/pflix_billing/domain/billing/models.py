from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pflix_billing.db import Base
from pflix_billing.domain.billing.enums import BillingType, Plan, PixPaymentStatus, SubscriptionStatus


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (Index("ix_subscriptions_status_period_end", "status", "current_period_end"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus), default=SubscriptionStatus.pending, nullable=False
    )
    plan: Mapped[Plan] = mapped_column(Enum(Plan), default=Plan.basic, nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_period_start: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    current_period_end: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    last_gateway_payment_ref: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    user = relationship("User")


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    subscription_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("subscriptions.id"), nullable=False, index=True
    )
    external_ref: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    billing_type: Mapped[BillingType] = mapped_column(Enum(BillingType), nullable=False)
    status: Mapped[str] = mapped_column(String(64), default="PENDING", nullable=False)
    value_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    payment_date: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    invoice_url: Mapped[str | None] = mapped_column(Text)
    pix_copia_e_cola: Mapped[str | None] = mapped_column(Text)
    pix_qr_code: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    subscription = relationship("Subscription")


class PixPayment(Base):
    __tablename__ = "pix_payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    subscription_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("subscriptions.id"), index=True)
    txid: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    value_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[PixPaymentStatus] = mapped_column(
        Enum(PixPaymentStatus), default=PixPaymentStatus.pending, nullable=False
    )
    paid_at: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    copia_e_cola: Mapped[str | None] = mapped_column(Text)
    qr_code_base64: Mapped[str | None] = mapped_column(Text)
    raw_webhook_payload_json: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    subscription = relationship("Subscription")
