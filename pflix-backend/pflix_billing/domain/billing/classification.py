"""Maps each provider's authoritative status vocabulary onto GatewayOutcome."""

from pflix_billing.domain.billing.enums import GatewayOutcome

ASAAS_PAID_STATUSES = {"RECEIVED", "CONFIRMED", "RECEIVED_IN_CASH"}
ASAAS_CANCELED_STATUSES = {"REFUNDED", "REFUND_IN_PROGRESS", "REFUND_REQUESTED"}

ASAAS_PAID_EVENTS = {"PAYMENT_CONFIRMED", "PAYMENT_RECEIVED"}

INTER_PIX_PAID_STATUS = "CONCLUIDA"
INTER_PIX_REMOVED_PREFIX = "REMOVIDA"

# Contain "RECEB" but mean the boleto is still open.
INTER_SITUACAO_UNPAID = {"A_RECEBER", "EM_PROCESSAMENTO"}
INTER_SITUACAO_OVERDUE = {"ATRASADO"}
INTER_SITUACAO_EXPIRED = {"CANCELADO", "EXPIRADO"}
INTER_SITUACAO_PAID_MARKERS = ("RECEB", "LIQUID", "PAG", "BAIXA")


def _normalize(value: object) -> str:
    return str(value or "").strip().upper()


def classify_asaas_status(status: object, *, deleted: bool = False) -> GatewayOutcome:
    if deleted:
        return GatewayOutcome.canceled
    normalized = _normalize(status)
    if normalized in ASAAS_PAID_STATUSES:
        return GatewayOutcome.paid
    if normalized == "OVERDUE":
        return GatewayOutcome.overdue
    if normalized in ASAAS_CANCELED_STATUSES:
        return GatewayOutcome.canceled
    return GatewayOutcome.other


def classify_inter_pix_status(status: object) -> GatewayOutcome:
    normalized = _normalize(status)
    if normalized == INTER_PIX_PAID_STATUS:
        return GatewayOutcome.paid
    if normalized.startswith(INTER_PIX_REMOVED_PREFIX):
        return GatewayOutcome.expired
    return GatewayOutcome.other


def classify_inter_situacao(situacao: object) -> GatewayOutcome:
    normalized = _normalize(situacao)
    if not normalized or normalized in INTER_SITUACAO_UNPAID:
        return GatewayOutcome.other
    if normalized in INTER_SITUACAO_OVERDUE:
        return GatewayOutcome.overdue
    if normalized in INTER_SITUACAO_EXPIRED:
        return GatewayOutcome.expired
    if any(marker in normalized for marker in INTER_SITUACAO_PAID_MARKERS):
        return GatewayOutcome.paid
    return GatewayOutcome.other
