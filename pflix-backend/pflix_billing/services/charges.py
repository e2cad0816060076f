"""Issues gateway charges and records the ledger rows reconciliation settles later."""
from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, time, timezone

from sqlalchemy.orm import Session

from pflix_billing import models
from pflix_billing.db import settings
from pflix_billing.domain.billing.enums import BillingType, PixPaymentStatus
from pflix_billing.domain.billing.periods import utcnow
from pflix_billing.domain.billing.plans import plan_config
from pflix_billing.schemas import ChargeOut
from pflix_billing.services.gateways.asaas import AsaasClient
from pflix_billing.services.gateways.errors import GatewayConfigError
from pflix_billing.services.gateways.inter import InterClient
from pflix_billing.services.subscriptions import get_or_create_subscription, has_active_subscription

logger = logging.getLogger(__name__)

PIX_EXPIRATION_SECONDS = 3600
ASAAS_BILLING_TYPES = (BillingType.pix, BillingType.boleto)


class ChargeError(Exception):
    pass


def _ensure_chargeable(db: Session, user: models.User) -> None:
    if has_active_subscription(db, user.id):
        raise ChargeError("user already has an active subscription")


async def issue_inter_pix_charge(
    db: Session,
    inter: InterClient,
    user: models.User,
    plan: models.Plan,
    *,
    pix_key: str | None = None,
) -> ChargeOut:
    _ensure_chargeable(db, user)
    pix_key = pix_key or settings.inter_pix_key
    if not pix_key:
        raise GatewayConfigError("Inter Pix key not configured (INTER_PIX_KEY)", provider="inter")

    config = plan_config(plan)
    subscription = get_or_create_subscription(db, user, plan)
    subscription_id = subscription.id

    cob = await inter.create_pix_cob(
        value_cents=config.price_cents,
        pix_key=pix_key,
        expiration_seconds=PIX_EXPIRATION_SECONDS,
        payer_document=user.cpf_cnpj,
        payer_message=f"Pflix - {config.name}",
    )
    qrcode = await inter.get_pix_qrcode_by_loc(cob["loc_id"])

    pix = models.PixPayment(
        id=str(uuid.uuid4()),
        subscription_id=subscription_id,
        txid=cob["txid"],
        value_cents=config.price_cents,
        status=PixPaymentStatus.pending,
        copia_e_cola=qrcode["copia_e_cola"],
        qr_code_base64=qrcode["qr_code_base64"],
    )
    db.add(pix)
    db.commit()
    logger.info("Inter Pix charge issued txid=%s subscription=%s", pix.txid, subscription_id)
    return ChargeOut(
        provider="inter",
        reference=pix.txid,
        billing_type=BillingType.pix,
        value_cents=config.price_cents,
        subscription_id=subscription_id,
        pix_copia_e_cola=pix.copia_e_cola,
        pix_qr_code=pix.qr_code_base64,
    )


async def issue_asaas_charge(
    db: Session,
    asaas: AsaasClient,
    user: models.User,
    plan: models.Plan,
    *,
    billing_type: BillingType = BillingType.pix,
    due_date: date | None = None,
) -> ChargeOut:
    if billing_type not in ASAAS_BILLING_TYPES:
        raise ChargeError(f"unsupported billing type {billing_type.value}")
    _ensure_chargeable(db, user)

    config = plan_config(plan)
    subscription = get_or_create_subscription(db, user, plan)
    subscription_id = subscription.id
    due = due_date or utcnow().date()

    customer = await asaas.get_or_create_customer(
        name=user.name or user.email.split("@")[0],
        email=user.email,
        cpf_cnpj=user.cpf_cnpj,
        phone=user.phone,
    )
    created = await asaas.create_payment(
        customer_id=customer["id"],
        billing_type=billing_type.value,
        value_cents=config.price_cents,
        due_date=due.isoformat(),
        description=f"Pflix - {config.name}",
        external_reference=user.id,
    )
    pix_data = {}
    if billing_type == BillingType.pix:
        pix_data = await asaas.get_pix_qr_code(created["id"])

    payment = models.Payment(
        id=str(uuid.uuid4()),
        subscription_id=subscription_id,
        external_ref=created["id"],
        billing_type=billing_type,
        status=str(created.get("status") or "PENDING").upper(),
        value_cents=config.price_cents,
        due_date=datetime.combine(due, time.min, tzinfo=timezone.utc),
        invoice_url=created.get("invoiceUrl") or created.get("bankSlipUrl"),
        pix_copia_e_cola=pix_data.get("payload"),
        pix_qr_code=pix_data.get("encodedImage"),
    )
    db.add(payment)
    db.commit()
    logger.info("Asaas charge issued payment=%s subscription=%s", payment.external_ref, subscription_id)
    return ChargeOut(
        provider="asaas",
        reference=payment.external_ref,
        billing_type=billing_type,
        value_cents=config.price_cents,
        subscription_id=subscription_id,
        invoice_url=payment.invoice_url,
        pix_copia_e_cola=payment.pix_copia_e_cola,
        pix_qr_code=payment.pix_qr_code,
    )
