from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from pflix_billing.db import settings
from pflix_billing.domain.billing.money import cents_to_decimal_str
from pflix_billing.services.gateways.base import PeriodCalculator
from pflix_billing.services.gateways.errors import (
    GatewayConfigError,
    GatewayNotFoundError,
    UpstreamVerificationError,
)

logger = logging.getLogger(__name__)

PROVIDER = "asaas"
PRODUCTION_URL = "https://api.asaas.com/v3"
SANDBOX_URL = "https://sandbox.asaas.com/api/v3"


def infer_api_url(api_key: str | None, *, production: bool) -> str:
    key = (api_key or "").lower()
    if "hmlg" in key:
        return SANDBOX_URL
    if "prod" in key:
        return PRODUCTION_URL
    return PRODUCTION_URL if production else SANDBOX_URL


def _error_description(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:500]
    errors = data.get("errors") if isinstance(data, dict) else None
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return str(errors[0].get("description") or errors[0])
    return response.text[:500]


class AsaasClient(PeriodCalculator):
    def __init__(
        self,
        *,
        api_key: str | None,
        api_url: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _request(self, method: str, path: str, *, json_body: dict | None = None, params: dict | None = None) -> dict[str, Any]:
        if not self.api_key:
            raise GatewayConfigError("Asaas API key not configured (ASAAS_API_KEY)", provider=PROVIDER)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    f"{self.api_url}{path}",
                    json=json_body,
                    params=params,
                    headers={"access_token": self.api_key, "Content-Type": "application/json"},
                )
        except httpx.TimeoutException as exc:
            raise UpstreamVerificationError(f"Asaas timeout on {method} {path}", provider=PROVIDER) from exc
        except httpx.HTTPError as exc:
            raise UpstreamVerificationError(
                f"Asaas transport error on {method} {path}: {exc}", provider=PROVIDER
            ) from exc

        status = response.status_code
        if status == 404:
            raise GatewayNotFoundError(f"Asaas 404 on {method} {path}", provider=PROVIDER, status_code=status)
        if status < 200 or status >= 300:
            description = _error_description(response)
            logger.warning("Asaas API error status=%s path=%s detail=%s", status, path, description)
            raise UpstreamVerificationError(
                f"Asaas HTTP {status}: {description}", provider=PROVIDER, status_code=status
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamVerificationError(
                f"Invalid JSON from Asaas: {response.text[:500]}", provider=PROVIDER, status_code=status
            ) from exc
        if not isinstance(data, dict):
            raise UpstreamVerificationError("Unexpected Asaas response shape", provider=PROVIDER, status_code=status)
        return data

    async def get_payment(self, payment_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/payments/{quote(payment_id, safe='')}")

    async def get_pix_qr_code(self, payment_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/payments/{quote(payment_id, safe='')}/pixQrCode")

    async def find_customer_by_email(self, email: str) -> dict[str, Any] | None:
        data = await self._request("GET", "/customers", params={"email": email})
        customers = data.get("data") or []
        return customers[0] if customers else None

    async def get_or_create_customer(
        self,
        *,
        name: str,
        email: str,
        cpf_cnpj: str | None = None,
        phone: str | None = None,
    ) -> dict[str, Any]:
        existing = await self.find_customer_by_email(email)
        if existing:
            return existing
        payload = {"name": name, "email": email}
        if cpf_cnpj:
            payload["cpfCnpj"] = cpf_cnpj
        if phone:
            payload["phone"] = phone
        return await self._request("POST", "/customers", json_body=payload)

    async def create_payment(
        self,
        *,
        customer_id: str,
        billing_type: str,
        value_cents: int,
        due_date: str,
        description: str | None = None,
        external_reference: str | None = None,
    ) -> dict[str, Any]:
        payload = {
            "customer": customer_id,
            "billingType": billing_type,
            "value": float(cents_to_decimal_str(value_cents)),
            "dueDate": due_date,
        }
        if description:
            payload["description"] = description
        if external_reference:
            payload["externalReference"] = external_reference
        return await self._request("POST", "/payments", json_body=payload)


_asaas_client: AsaasClient | None = None


def build_asaas_client() -> AsaasClient:
    api_url = settings.asaas_api_url or infer_api_url(settings.asaas_api_key, production=settings.IS_PRODUCTION)
    return AsaasClient(
        api_key=settings.asaas_api_key,
        api_url=api_url,
        timeout=settings.gateway_timeout_seconds,
    )


# Dependency
def get_asaas_client() -> AsaasClient:
    global _asaas_client
    if _asaas_client is None:
        _asaas_client = build_asaas_client()
    return _asaas_client
