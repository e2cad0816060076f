"""Gateway client contracts consumed by the reconciliation engine."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from pflix_billing.domain.billing.periods import calculate_period_end


class PeriodCalculator:
    def calculate_period_end(self, start: datetime) -> datetime:
        return calculate_period_end(start)


class AsaasGateway(Protocol):
    def calculate_period_end(self, start: datetime) -> datetime:
        ...

    async def get_payment(self, payment_id: str) -> dict[str, Any]:
        """Authoritative payment detail (`status`, `value`, `deleted`, ...)."""
        ...

    async def get_pix_qr_code(self, payment_id: str) -> dict[str, Any]:
        """`{payload, encodedImage, expirationDate}` for a PIX payment."""
        ...


class InterGateway(Protocol):
    def calculate_period_end(self, start: datetime) -> datetime:
        ...

    async def get_pix_cob(self, txid: str) -> dict[str, Any]:
        """`{txid, status, valor: {original}}` of an immediate Pix charge."""
        ...

    async def get_cobranca_detalhe(self, codigo_solicitacao: str) -> dict[str, Any]:
        """`{cobranca: {situacao, valorNominal, ...}}` of a boleto charge."""
        ...
