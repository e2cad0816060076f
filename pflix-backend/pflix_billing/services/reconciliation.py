"""Turns verified gateway notifications into ledger and subscription updates.

Every money-moving decision follows the same skeleton: look the reference up,
short-circuit when the paid-marker is already set, re-verify with the gateway,
compare amounts, classify the authoritative status and finally commit through
a conditional UPDATE guarded by the paid-marker. Only that UPDATE is
authoritative; a delivery that loses the race sees zero affected rows and
reports ``already_paid``.

The gateway call always happens outside a database transaction. Gateway
failures propagate as ``UpstreamVerificationError`` before anything is written.
"""
from __future__ import annotations

import functools
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from pflix_billing import models
from pflix_billing.domain.billing.classification import (
    ASAAS_PAID_EVENTS,
    classify_asaas_status,
    classify_inter_pix_status,
    classify_inter_situacao,
)
from pflix_billing.domain.billing.enums import (
    BillingType,
    GatewayOutcome,
    PixPaymentStatus,
    SubscriptionStatus,
    WebhookAction,
)
from pflix_billing.domain.billing.money import money_matches, parse_money_cents
from pflix_billing.domain.billing.payloads import PixCallbackItem
from pflix_billing.domain.billing.periods import utcnow
from pflix_billing.domain.billing.plans import plan_config, plan_display_name
from pflix_billing.domain.billing.state import sources_for
from pflix_billing.schemas import AsaasWebhookPayment
from pflix_billing.services.gateways.base import AsaasGateway, InterGateway
from pflix_billing.services.gateways.errors import GatewayNotFoundError

logger = logging.getLogger(__name__)

PAID_PAYMENT_STATUS = "RECEIVED"


@dataclass(frozen=True)
class PaymentNotice:
    kind: str
    to_email: str
    to_name: str | None
    user_id: str
    subscription_id: str
    plan_name: str
    value_cents: int
    reference: str
    event: str
    period_end: datetime | None = None


@dataclass(frozen=True)
class ReconcileResult:
    ref: str
    action: WebhookAction
    situacao: str | None = None
    notice: PaymentNotice | None = None

    def as_dict(self, ref_key: str) -> dict[str, Any]:
        data: dict[str, Any] = {"ref": self.ref, ref_key: self.ref, "action": self.action.value}
        if self.situacao is not None:
            data["situacao"] = self.situacao
        return data


def _ends_transaction(func):
    """Read snapshots opened after the last commit are released before returning."""

    @functools.wraps(func)
    async def wrapper(db: Session, *args, **kwargs):
        try:
            return await func(db, *args, **kwargs)
        finally:
            db.rollback()

    return wrapper


def _dump_payload(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, default=str)


def _build_notice(
    db: Session,
    subscription_id: str | None,
    *,
    kind: str,
    value_cents: int,
    reference: str,
    event: str,
    period_end: datetime | None = None,
) -> PaymentNotice | None:
    if not subscription_id:
        return None
    subscription = (
        db.query(models.Subscription)
        .options(joinedload(models.Subscription.user))
        .filter(models.Subscription.id == subscription_id)
        .first()
    )
    user = subscription.user if subscription else None
    if not user or not user.email:
        return None
    return PaymentNotice(
        kind=kind,
        to_email=user.email,
        to_name=user.name,
        user_id=user.id,
        subscription_id=subscription.id,
        plan_name=plan_display_name(subscription.plan),
        value_cents=value_cents,
        reference=reference,
        event=event,
        period_end=period_end,
    )


def _activate_subscription(
    db: Session,
    subscription_id: str,
    *,
    reference: str,
    now: datetime,
    period_end: datetime,
) -> None:
    db.execute(
        update(models.Subscription)
        .where(models.Subscription.id == subscription_id)
        .values(
            status=SubscriptionStatus.active,
            current_period_start=now,
            current_period_end=period_end,
            last_gateway_payment_ref=reference,
        )
        .execution_options(synchronize_session=False)
    )


def _transition_subscription(
    db: Session,
    subscription_id: str,
    target: SubscriptionStatus,
    *,
    now: datetime,
) -> bool:
    """Moves the subscription to OVERDUE/CANCELED when the state machine allows it."""
    conditions = [
        models.Subscription.id == subscription_id,
        models.Subscription.status.in_(sources_for(target)),
    ]
    if target == SubscriptionStatus.overdue:
        # A late OVERDUE for an old charge must not downgrade a period paid by a newer one.
        conditions.append(
            or_(
                models.Subscription.status != SubscriptionStatus.active,
                models.Subscription.current_period_end.is_(None),
                models.Subscription.current_period_end <= now,
            )
        )
    result = db.execute(
        update(models.Subscription)
        .where(*conditions)
        .values(status=target)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def _commit_paid_payment(
    db: Session,
    payment_id: str,
    subscription_id: str,
    *,
    reference: str,
    status: str,
    now: datetime,
    period_end: datetime,
    invoice_url: str | None = None,
) -> bool:
    values: dict[str, Any] = {"status": status, "payment_date": now}
    if invoice_url:
        values["invoice_url"] = invoice_url
    try:
        result = db.execute(
            update(models.Payment)
            .where(models.Payment.id == payment_id, models.Payment.payment_date.is_(None))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            return False
        _activate_subscription(db, subscription_id, reference=reference, now=now, period_end=period_end)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return True


def _update_payment_status(
    db: Session,
    payment_id: str,
    status: str,
    *,
    invoice_url: str | None = None,
    only_unpaid: bool = False,
) -> None:
    values: dict[str, Any] = {"status": status}
    if invoice_url:
        values["invoice_url"] = invoice_url
    stmt = update(models.Payment).where(models.Payment.id == payment_id)
    if only_unpaid:
        stmt = stmt.where(models.Payment.payment_date.is_(None))
    db.execute(stmt.values(**values).execution_options(synchronize_session=False))


# Inter Pix


def _refresh_pix_payload(db: Session, pix_id: str, raw_json: str) -> None:
    db.execute(
        update(models.PixPayment)
        .where(models.PixPayment.id == pix_id)
        .values(raw_webhook_payload_json=raw_json)
        .execution_options(synchronize_session=False)
    )
    db.commit()


@_ends_transaction
async def reconcile_inter_pix(
    db: Session,
    gateway: InterGateway,
    item: PixCallbackItem,
    raw_payload: Any,
) -> ReconcileResult:
    txid = item.txid
    pix = db.query(models.PixPayment).filter(models.PixPayment.txid == txid).first()
    if not pix:
        logger.info("Inter Pix txid not found locally txid=%s", txid)
        return ReconcileResult(txid, WebhookAction.not_found)

    raw_json = _dump_payload(raw_payload)
    pix_id = pix.id
    if pix.paid_at is not None or pix.status == PixPaymentStatus.paid:
        _refresh_pix_payload(db, pix_id, raw_json)
        return ReconcileResult(txid, WebhookAction.already_paid)
    if pix.status == PixPaymentStatus.expired:
        _refresh_pix_payload(db, pix_id, raw_json)
        return ReconcileResult(txid, WebhookAction.expired)

    expected_cents = pix.value_cents
    subscription_id = pix.subscription_id
    # Release the read snapshot before the network call.
    db.commit()

    try:
        cob = await gateway.get_pix_cob(txid)
    except GatewayNotFoundError:
        logger.warning("Inter Pix cob missing upstream txid=%s", txid)
        return ReconcileResult(txid, WebhookAction.not_found)

    valor = cob.get("valor")
    received_cents = parse_money_cents(valor.get("original")) if isinstance(valor, dict) else None
    if received_cents is None:
        received_cents = parse_money_cents(item.valor)
    if not money_matches(expected_cents, received_cents):
        logger.error(
            "Inter Pix value mismatch txid=%s expected_cents=%s received_cents=%s",
            txid,
            expected_cents,
            received_cents,
        )
        return ReconcileResult(txid, WebhookAction.value_mismatch)

    outcome = classify_inter_pix_status(cob.get("status"))

    if outcome == GatewayOutcome.paid:
        now = utcnow()
        period_end = gateway.calculate_period_end(now)
        try:
            result = db.execute(
                update(models.PixPayment)
                .where(
                    models.PixPayment.id == pix_id,
                    models.PixPayment.paid_at.is_(None),
                    models.PixPayment.status == PixPaymentStatus.pending,
                )
                .values(status=PixPaymentStatus.paid, paid_at=now, raw_webhook_payload_json=raw_json)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                current = (
                    db.query(models.PixPayment.status)
                    .filter(models.PixPayment.id == pix_id)
                    .scalar()
                )
                if current == PixPaymentStatus.expired:
                    return ReconcileResult(txid, WebhookAction.expired)
                logger.info("Inter Pix concurrent delivery already settled txid=%s", txid)
                return ReconcileResult(txid, WebhookAction.already_paid)
            if subscription_id:
                _activate_subscription(db, subscription_id, reference=txid, now=now, period_end=period_end)
            db.execute(
                update(models.Payment)
                .where(models.Payment.external_ref == txid, models.Payment.payment_date.is_(None))
                .values(status=PAID_PAYMENT_STATUS, payment_date=now)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info("Inter Pix paid txid=%s subscription=%s until=%s", txid, subscription_id, period_end.isoformat())
        notice = _build_notice(
            db,
            subscription_id,
            kind="paid",
            value_cents=expected_cents,
            reference=txid,
            event="INTER_PIX_PAID",
            period_end=period_end,
        )
        return ReconcileResult(txid, WebhookAction.paid, notice=notice)

    if outcome == GatewayOutcome.expired:
        db.execute(
            update(models.PixPayment)
            .where(models.PixPayment.id == pix_id, models.PixPayment.status == PixPaymentStatus.pending)
            .values(status=PixPaymentStatus.expired, raw_webhook_payload_json=raw_json)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        logger.info("Inter Pix charge removed txid=%s status=%s", txid, cob.get("status"))
        return ReconcileResult(txid, WebhookAction.expired)

    _refresh_pix_payload(db, pix_id, raw_json)
    logger.info("Inter Pix status ignored txid=%s status=%s", txid, cob.get("status"))
    return ReconcileResult(txid, WebhookAction.ignored)


# Inter Cobranca (boleto)


def _cobranca_received_cents(cobranca: dict[str, Any]) -> int | None:
    received = parse_money_cents(cobranca.get("valorTotalRecebido"))
    if received:
        return received
    return parse_money_cents(cobranca.get("valorNominal"))


@_ends_transaction
async def reconcile_inter_cobranca(
    db: Session,
    gateway: InterGateway,
    codigo_solicitacao: str,
    *,
    value_hint: object | None = None,
) -> ReconcileResult:
    payment = (
        db.query(models.Payment)
        .filter(models.Payment.external_ref == codigo_solicitacao)
        .first()
    )
    if not payment:
        logger.info("Inter cobranca not found locally codigoSolicitacao=%s", codigo_solicitacao)
        return ReconcileResult(codigo_solicitacao, WebhookAction.not_found)
    if payment.billing_type != BillingType.boleto:
        logger.info(
            "Inter cobranca ignored: payment is %s codigoSolicitacao=%s",
            payment.billing_type.value,
            codigo_solicitacao,
        )
        return ReconcileResult(codigo_solicitacao, WebhookAction.ignored)
    if payment.payment_date is not None:
        return ReconcileResult(codigo_solicitacao, WebhookAction.already_paid)

    payment_id = payment.id
    subscription_id = payment.subscription_id
    expected_cents = payment.value_cents
    db.commit()

    try:
        detalhe = await gateway.get_cobranca_detalhe(codigo_solicitacao)
    except GatewayNotFoundError:
        logger.warning("Inter cobranca missing upstream codigoSolicitacao=%s", codigo_solicitacao)
        return ReconcileResult(codigo_solicitacao, WebhookAction.not_found)

    cobranca = detalhe.get("cobranca") if isinstance(detalhe.get("cobranca"), dict) else detalhe
    situacao = str(cobranca.get("situacao") or "").strip().upper()

    received_cents = _cobranca_received_cents(cobranca)
    if received_cents is None:
        received_cents = parse_money_cents(value_hint)
    # The cobranca detail does not always carry amounts; compare when one is known.
    if received_cents is not None and not money_matches(expected_cents, received_cents):
        logger.error(
            "Inter cobranca value mismatch codigoSolicitacao=%s expected_cents=%s received_cents=%s",
            codigo_solicitacao,
            expected_cents,
            received_cents,
        )
        return ReconcileResult(codigo_solicitacao, WebhookAction.value_mismatch, situacao=situacao)

    outcome = classify_inter_situacao(situacao)
    now = utcnow()

    if outcome == GatewayOutcome.paid:
        period_end = gateway.calculate_period_end(now)
        committed = _commit_paid_payment(
            db,
            payment_id,
            subscription_id,
            reference=codigo_solicitacao,
            status=PAID_PAYMENT_STATUS,
            now=now,
            period_end=period_end,
        )
        if not committed:
            logger.info("Inter cobranca concurrent delivery already settled codigoSolicitacao=%s", codigo_solicitacao)
            return ReconcileResult(codigo_solicitacao, WebhookAction.already_paid, situacao=situacao)
        logger.info("Inter cobranca paid codigoSolicitacao=%s subscription=%s", codigo_solicitacao, subscription_id)
        notice = _build_notice(
            db,
            subscription_id,
            kind="paid",
            value_cents=expected_cents,
            reference=codigo_solicitacao,
            event="INTER_COBRANCA_PAID",
            period_end=period_end,
        )
        return ReconcileResult(codigo_solicitacao, WebhookAction.paid, situacao=situacao, notice=notice)

    if outcome == GatewayOutcome.overdue:
        _update_payment_status(db, payment_id, situacao, only_unpaid=True)
        changed = _transition_subscription(db, subscription_id, SubscriptionStatus.overdue, now=now)
        db.commit()
        if not changed:
            return ReconcileResult(codigo_solicitacao, WebhookAction.ignored, situacao=situacao)
        notice = _build_notice(
            db,
            subscription_id,
            kind="overdue",
            value_cents=expected_cents,
            reference=codigo_solicitacao,
            event="INTER_COBRANCA_OVERDUE",
        )
        return ReconcileResult(codigo_solicitacao, WebhookAction.overdue, situacao=situacao, notice=notice)

    if outcome == GatewayOutcome.expired:
        _update_payment_status(db, payment_id, situacao, only_unpaid=True)
        db.commit()
        return ReconcileResult(codigo_solicitacao, WebhookAction.expired, situacao=situacao)

    logger.info("Inter cobranca situacao ignored codigoSolicitacao=%s situacao=%s", codigo_solicitacao, situacao)
    return ReconcileResult(codigo_solicitacao, WebhookAction.ignored, situacao=situacao)


# Asaas


def _parse_billing_type(value: str | None) -> BillingType | None:
    try:
        return BillingType(str(value or "").strip().upper())
    except ValueError:
        return None


def _parse_gateway_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _create_payment_from_webhook(db: Session, data: AsaasWebhookPayment) -> models.Payment | None:
    """Records an Asaas payment the ledger never saw, when it names a known user."""
    if not data.external_reference:
        return None
    subscription = (
        db.query(models.Subscription)
        .filter(models.Subscription.user_id == data.external_reference)
        .first()
    )
    if not subscription:
        return None
    billing_type = _parse_billing_type(data.billing_type)
    if billing_type is None:
        logger.warning(
            "Asaas payment with unsupported billingType not recorded payment=%s billingType=%s",
            data.id,
            data.billing_type,
        )
        return None
    # The amount owed comes from the plan, never from the delivery.
    expected_cents = subscription.price_cents or plan_config(subscription.plan).price_cents
    payment = models.Payment(
        id=str(uuid.uuid4()),
        subscription_id=subscription.id,
        external_ref=data.id,
        billing_type=billing_type,
        status=str(data.status or "PENDING").upper(),
        value_cents=expected_cents,
        due_date=_parse_gateway_date(data.due_date),
        invoice_url=data.invoice_url or data.bank_slip_url,
    )
    db.add(payment)
    try:
        db.commit()
    except IntegrityError:
        # Another delivery created the same row first.
        db.rollback()
        return db.query(models.Payment).filter(models.Payment.external_ref == data.id).first()
    logger.info("Asaas payment created from webhook payment=%s subscription=%s", data.id, subscription.id)
    return payment


@_ends_transaction
async def reconcile_asaas(
    db: Session,
    gateway: AsaasGateway,
    event: str,
    data: AsaasWebhookPayment,
) -> ReconcileResult:
    ref = data.id
    payment = db.query(models.Payment).filter(models.Payment.external_ref == ref).first()
    if not payment:
        payment = _create_payment_from_webhook(db, data)
    if not payment:
        logger.info("Asaas payment not found locally payment=%s event=%s", ref, event)
        return ReconcileResult(ref, WebhookAction.not_found)

    already_paid = payment.payment_date is not None
    if already_paid and event in ASAAS_PAID_EVENTS:
        return ReconcileResult(ref, WebhookAction.already_paid)

    payment_id = payment.id
    subscription_id = payment.subscription_id
    expected_cents = payment.value_cents
    db.commit()

    try:
        detail = await gateway.get_payment(ref)
    except GatewayNotFoundError:
        logger.warning("Asaas payment missing upstream payment=%s", ref)
        return ReconcileResult(ref, WebhookAction.not_found)

    received_cents = parse_money_cents(detail.get("value"))
    if received_cents is None:
        received_cents = parse_money_cents(data.value)
    if not money_matches(expected_cents, received_cents):
        logger.error(
            "Asaas value mismatch payment=%s expected_cents=%s received_cents=%s",
            ref,
            expected_cents,
            received_cents,
        )
        return ReconcileResult(ref, WebhookAction.value_mismatch)

    status = str(detail.get("status") or data.status or "").strip().upper()
    outcome = classify_asaas_status(status, deleted=bool(detail.get("deleted")))
    invoice_url = detail.get("invoiceUrl") or detail.get("bankSlipUrl") or data.invoice_url or data.bank_slip_url
    now = utcnow()

    if outcome == GatewayOutcome.paid:
        if already_paid:
            return ReconcileResult(ref, WebhookAction.already_paid)
        period_end = gateway.calculate_period_end(now)
        committed = _commit_paid_payment(
            db,
            payment_id,
            subscription_id,
            reference=ref,
            status=status,
            now=now,
            period_end=period_end,
            invoice_url=invoice_url,
        )
        if not committed:
            logger.info("Asaas concurrent delivery already settled payment=%s", ref)
            return ReconcileResult(ref, WebhookAction.already_paid)
        logger.info("Asaas payment paid payment=%s subscription=%s", ref, subscription_id)
        notice = _build_notice(
            db,
            subscription_id,
            kind="paid",
            value_cents=expected_cents,
            reference=ref,
            event=event or "ASAAS_PAYMENT_PAID",
            period_end=period_end,
        )
        return ReconcileResult(ref, WebhookAction.paid, notice=notice)

    if outcome in (GatewayOutcome.overdue, GatewayOutcome.canceled):
        target = SubscriptionStatus.overdue if outcome == GatewayOutcome.overdue else SubscriptionStatus.canceled
        _update_payment_status(db, payment_id, status or outcome.value.upper(), invoice_url=invoice_url)
        changed = _transition_subscription(db, subscription_id, target, now=now)
        db.commit()
        if not changed:
            logger.info("Asaas %s skipped for subscription=%s payment=%s", target.value, subscription_id, ref)
            return ReconcileResult(ref, WebhookAction.ignored)
        logger.info("Asaas subscription=%s moved to %s by payment=%s", subscription_id, target.value, ref)
        action = WebhookAction.overdue if outcome == GatewayOutcome.overdue else WebhookAction.canceled
        notice = None
        if outcome == GatewayOutcome.overdue:
            notice = _build_notice(
                db,
                subscription_id,
                kind="overdue",
                value_cents=expected_cents,
                reference=ref,
                event=event or "PAYMENT_OVERDUE",
            )
        return ReconcileResult(ref, action, notice=notice)

    if status:
        _update_payment_status(db, payment_id, status, invoice_url=invoice_url, only_unpaid=True)
        db.commit()
    logger.info("Asaas event ignored payment=%s event=%s status=%s", ref, event, status)
    return ReconcileResult(ref, WebhookAction.ignored)
