from __future__ import annotations

import logging
import secrets
import ssl
import time
from dataclasses import dataclass
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

PROVIDER = "inter"

BASE_URLS = {
    "PRODUCTION": "https://cdpj.partners.bancointer.com.br",
    "SANDBOX": "https://cdpj-sandbox.partners.uatinter.co",
}
TOKEN_PATH = "/oauth/v2/token"
PIX_PATH = "/pix/v2"
COBRANCA_PATH = "/cobranca/v3/cobrancas"

# Tokens are refreshed this many seconds before the gateway-declared expiry.
TOKEN_REFRESH_MARGIN_SECONDS = 30
TOKEN_EXPIRY_SAFETY_SECONDS = 60


@dataclass(frozen=True)
class CachedToken:
    token: str
    expires_at: float


def resolve_environment(raw: str | None, *, production: bool) -> str:
    env = (raw or "").strip().upper()
    if env in ("PRODUCTION", "PROD"):
        return "PRODUCTION"
    if env in ("SANDBOX", "HOMOLOG", "HOMOLOGACAO"):
        return "SANDBOX"
    return "PRODUCTION" if production else "SANDBOX"


def scope_key(scopes: list[str]) -> str:
    return " ".join(sorted({s.strip() for s in scopes if s and s.strip()}))


def generate_txid() -> str:
    return secrets.token_hex(16)


class InterClient(PeriodCalculator):
    """Banco Inter Pix and Cobrança APIs.

    The access-token cache lives on the instance, which is process-scoped.
    Concurrent refreshes may both hit the token endpoint; the later write simply
    replaces the earlier one, so no lock is taken.
    """

    def __init__(
        self,
        *,
        client_id: str | None,
        client_secret: str | None,
        environment: str = "SANDBOX",
        cert_path: str | None = None,
        key_path: str | None = None,
        conta_corrente: str | None = None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.environment = environment
        self.base_url = BASE_URLS[environment]
        self.cert_path = cert_path
        self.key_path = key_path
        self.conta_corrente = conta_corrente
        self.timeout = timeout
        self._transport = transport
        self._ssl_context: ssl.SSLContext | None = None
        self._tokens: dict[str, CachedToken] = {}

    def _verify(self) -> ssl.SSLContext | bool:
        if not self.cert_path or not self.key_path:
            return True
        if self._ssl_context is None:
            context = ssl.create_default_context()
            context.load_cert_chain(certfile=self.cert_path, keyfile=self.key_path)
            self._ssl_context = context
        return self._ssl_context

    def _account_headers(self) -> dict[str, str]:
        return {"x-conta-corrente": self.conta_corrente} if self.conta_corrente else {}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        json_body: dict | None = None,
        form: dict | None = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                verify=self._verify(),
                transport=self._transport,
            ) as client:
                response = await client.request(method, url, headers=headers, json=json_body, data=form)
        except httpx.TimeoutException as exc:
            raise UpstreamVerificationError(f"Inter API timeout on {method} {path}", provider=PROVIDER) from exc
        except httpx.HTTPError as exc:
            raise UpstreamVerificationError(
                f"Inter API transport error on {method} {path}: {exc}", provider=PROVIDER
            ) from exc

        status = response.status_code
        if status == 404:
            raise GatewayNotFoundError(f"Inter API 404 on {method} {path}", provider=PROVIDER, status_code=status)
        if status < 200 or status >= 300:
            raise UpstreamVerificationError(
                f"Inter API HTTP {status}: {response.text[:500]}", provider=PROVIDER, status_code=status
            )
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamVerificationError(
                f"Invalid JSON from Inter: {response.text[:500]}", provider=PROVIDER, status_code=status
            ) from exc
        if not isinstance(data, dict):
            raise UpstreamVerificationError("Unexpected Inter response shape", provider=PROVIDER, status_code=status)
        return data

    async def get_access_token(self, scopes: list[str]) -> str:
        if not self.client_id or not self.client_secret:
            raise GatewayConfigError(
                "Inter OAuth not configured (INTER_CLIENT_ID/INTER_CLIENT_SECRET)", provider=PROVIDER
            )
        key = scope_key(scopes)
        now = time.time()
        cached = self._tokens.get(key)
        if cached and cached.expires_at > now + TOKEN_REFRESH_MARGIN_SECONDS:
            return cached.token

        data = await self._request(
            "POST",
            TOKEN_PATH,
            headers={"Accept": "application/json"},
            form={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
                "scope": key,
            },
        )
        token = data.get("access_token")
        if not token:
            raise UpstreamVerificationError("Inter token response without access_token", provider=PROVIDER)
        try:
            expires_in = int(data.get("expires_in") or 3600)
        except (TypeError, ValueError):
            expires_in = 3600
        expires_at = time.time() + max(0, expires_in - TOKEN_EXPIRY_SAFETY_SECONDS)
        self._tokens[key] = CachedToken(token=token, expires_at=expires_at)
        logger.info("Inter access token refreshed scopes=%s", key)
        return token

    async def _authorized_headers(self, scopes: list[str], **extra: str) -> dict[str, str]:
        token = await self.get_access_token(scopes)
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        headers.update(self._account_headers())
        headers.update(extra)
        return headers

    async def get_pix_cob(self, txid: str) -> dict[str, Any]:
        headers = await self._authorized_headers(["cob.read"])
        return await self._request("GET", f"{PIX_PATH}/cob/{quote(txid, safe='')}", headers=headers)

    async def get_cobranca_detalhe(self, codigo_solicitacao: str) -> dict[str, Any]:
        headers = await self._authorized_headers(["boleto-cobranca.read"])
        return await self._request(
            "GET", f"{COBRANCA_PATH}/{quote(codigo_solicitacao, safe='')}", headers=headers
        )

    async def create_pix_cob(
        self,
        *,
        value_cents: int,
        pix_key: str,
        expiration_seconds: int = 3600,
        txid: str | None = None,
        payer_document: str | None = None,
        payer_message: str | None = None,
    ) -> dict[str, Any]:
        txid = txid or generate_txid()
        payload: dict[str, Any] = {
            "calendario": {"expiracao": expiration_seconds},
            "valor": {"original": cents_to_decimal_str(value_cents)},
            "chave": pix_key,
        }
        if payer_message:
            payload["solicitacaoPagador"] = payer_message
        digits = "".join(ch for ch in (payer_document or "") if ch.isdigit())
        if len(digits) == 11:
            payload["devedor"] = {"cpf": digits}
        elif len(digits) == 14:
            payload["devedor"] = {"cnpj": digits}

        headers = await self._authorized_headers(
            ["cob.write", "payloadlocation.write"], **{"Content-Type": "application/json"}
        )
        data = await self._request("PUT", f"{PIX_PATH}/cob/{txid}", headers=headers, json_body=payload)
        loc_id = (data.get("loc") or {}).get("id")
        if not loc_id:
            raise UpstreamVerificationError("Inter created the charge without loc.id", provider=PROVIDER)
        return {"txid": data.get("txid") or txid, "loc_id": loc_id}

    async def get_pix_qrcode_by_loc(self, loc_id: int) -> dict[str, str]:
        headers = await self._authorized_headers(["payloadlocation.read"])
        data = await self._request("GET", f"{PIX_PATH}/loc/{loc_id}/qrcode", headers=headers)
        copia_e_cola = str(data.get("qrcode") or data.get("payload") or "").strip()
        qr_code_base64 = str(data.get("imagemQrcode") or data.get("encodedImage") or "").strip()
        if not copia_e_cola or not qr_code_base64:
            raise UpstreamVerificationError("Inter QR code response without payload/image", provider=PROVIDER)
        return {"copia_e_cola": copia_e_cola, "qr_code_base64": qr_code_base64}


_inter_client: InterClient | None = None


def build_inter_client() -> InterClient:
    return InterClient(
        client_id=settings.inter_client_id,
        client_secret=settings.inter_client_secret,
        environment=resolve_environment(settings.inter_env, production=settings.IS_PRODUCTION),
        cert_path=settings.inter_cert_path,
        key_path=settings.inter_key_path,
        conta_corrente=settings.inter_conta_corrente,
        timeout=settings.gateway_timeout_seconds,
    )


# Dependency
def get_inter_client() -> InterClient:
    global _inter_client
    if _inter_client is None:
        _inter_client = build_inter_client()
    return _inter_client
