from datetime import date, datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from pflix_billing import models


# Webhooks


class AsaasWebhookPayment(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    status: Optional[str] = None
    value: Optional[Union[float, str]] = None
    billing_type: Optional[str] = Field(default=None, alias="billingType")
    external_reference: Optional[str] = Field(default=None, alias="externalReference")
    due_date: Optional[str] = Field(default=None, alias="dueDate")
    invoice_url: Optional[str] = Field(default=None, alias="invoiceUrl")
    bank_slip_url: Optional[str] = Field(default=None, alias="bankSlipUrl")
    deleted: bool = False


class AsaasWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: str = ""
    payment: Optional[AsaasWebhookPayment] = None


# Subscriptions


class SubscriptionDetailsOut(BaseModel):
    active: bool
    status: Optional[models.SubscriptionStatus] = None
    plan: Optional[models.Plan] = None
    plan_name: Optional[str] = None
    screens: Optional[int] = None
    current_period_end: Optional[datetime] = None
    days_left: Optional[int] = None


# Charges


class ChargeOut(BaseModel):
    provider: str
    reference: str
    billing_type: models.BillingType
    value_cents: int
    subscription_id: str
    invoice_url: Optional[str] = None
    pix_copia_e_cola: Optional[str] = None
    pix_qr_code: Optional[str] = None


class ChargeIn(BaseModel):
    plan: models.Plan
    provider: Literal["asaas", "inter"] = "asaas"
    billing_type: models.BillingType = models.BillingType.pix
    due_date: Optional[date] = None
