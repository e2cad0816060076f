"""Testes dos clientes HTTP das operadoras com httpx.MockTransport."""

import json

import httpx
import pytest

from pflix_billing.services.gateways.asaas import (
    PRODUCTION_URL,
    SANDBOX_URL,
    AsaasClient,
    infer_api_url,
)
from pflix_billing.services.gateways.errors import (
    GatewayConfigError,
    GatewayNotFoundError,
    UpstreamVerificationError,
)
from pflix_billing.services.gateways.inter import (
    BASE_URLS,
    InterClient,
    resolve_environment,
    scope_key,
)


def _inter_client(handler) -> InterClient:
    return InterClient(
        client_id="client-id",
        client_secret="client-secret",
        environment="SANDBOX",
        conta_corrente="123456",
        transport=httpx.MockTransport(handler),
    )


def _token_response(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"access_token": "tok-1", "expires_in": 3600})


class TestInterClient:
    @pytest.mark.asyncio
    async def test_get_pix_cob_uses_cached_token(self) -> None:
        calls = {"token": 0, "cob": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/oauth/v2/token":
                calls["token"] += 1
                form = dict(httpx.QueryParams(request.content.decode()))
                assert form["grant_type"] == "client_credentials"
                assert form["scope"] == "cob.read"
                return _token_response(request)
            calls["cob"] += 1
            assert request.url.path == "/pix/v2/cob/tx1"
            assert request.headers["authorization"] == "Bearer tok-1"
            assert request.headers["x-conta-corrente"] == "123456"
            return httpx.Response(200, json={"txid": "tx1", "status": "CONCLUIDA", "valor": {"original": "14.99"}})

        client = _inter_client(handler)
        first = await client.get_pix_cob("tx1")
        second = await client.get_pix_cob("tx1")

        assert first["status"] == "CONCLUIDA"
        assert second == first
        assert calls == {"token": 1, "cob": 2}

    @pytest.mark.asyncio
    async def test_token_refreshed_when_close_to_expiry(self) -> None:
        tokens = iter(["tok-a", "tok-b"])

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/oauth/v2/token":
                # 60s of declared lifetime leaves nothing after the safety margin.
                return httpx.Response(200, json={"access_token": next(tokens), "expires_in": 60})
            return httpx.Response(200, json={"situacao": "A_RECEBER"})

        client = _inter_client(handler)
        assert await client.get_access_token(["boleto-cobranca.read"]) == "tok-a"
        assert await client.get_access_token(["boleto-cobranca.read"]) == "tok-b"

    @pytest.mark.asyncio
    async def test_not_found_maps_to_gateway_not_found(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/oauth/v2/token":
                return _token_response(request)
            return httpx.Response(404, json={"title": "not found"})

        with pytest.raises(GatewayNotFoundError):
            await _inter_client(handler).get_cobranca_detalhe("3f2b6c1e-9a4d-4c7e-8b2a-1d5e6f7a8b9c")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(503, text="unavailable"),
            httpx.Response(200, text="<html>"),
            httpx.Response(200, json=["unexpected"]),
        ],
    )
    async def test_unusable_responses_raise_upstream_error(self, response) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/oauth/v2/token":
                return _token_response(request)
            return response

        with pytest.raises(UpstreamVerificationError):
            await _inter_client(handler).get_pix_cob("tx1")

    @pytest.mark.asyncio
    async def test_timeout_raises_upstream_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(UpstreamVerificationError):
            await _inter_client(handler).get_pix_cob("tx1")

    @pytest.mark.asyncio
    async def test_missing_credentials(self) -> None:
        client = InterClient(client_id=None, client_secret=None, transport=httpx.MockTransport(_token_response))
        with pytest.raises(GatewayConfigError):
            await client.get_pix_cob("tx1")

    @pytest.mark.asyncio
    async def test_create_pix_cob_and_qrcode(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/oauth/v2/token":
                return _token_response(request)
            if request.method == "PUT":
                seen["body"] = json.loads(request.content)
                return httpx.Response(201, json={"txid": "tx9", "loc": {"id": 77}})
            assert request.url.path == "/pix/v2/loc/77/qrcode"
            return httpx.Response(200, json={"qrcode": "000201...", "imagemQrcode": "iVBOR"})

        client = _inter_client(handler)
        created = await client.create_pix_cob(
            value_cents=1499, pix_key="chave@pflix.com.br", txid="tx9", payer_document="123.456.789-09"
        )
        qrcode = await client.get_pix_qrcode_by_loc(created["loc_id"])

        assert created == {"txid": "tx9", "loc_id": 77}
        assert seen["body"]["valor"] == {"original": "14.99"}
        assert seen["body"]["devedor"] == {"cpf": "12345678909"}
        assert qrcode == {"copia_e_cola": "000201...", "qr_code_base64": "iVBOR"}

    def test_environment_and_scope_helpers(self) -> None:
        assert resolve_environment("prod", production=False) == "PRODUCTION"
        assert resolve_environment(None, production=True) == "PRODUCTION"
        assert resolve_environment("", production=False) == "SANDBOX"
        assert scope_key(["cob.write", "cob.read", "cob.read"]) == "cob.read cob.write"
        assert set(BASE_URLS) == {"PRODUCTION", "SANDBOX"}


class TestAsaasClient:
    @pytest.mark.asyncio
    async def test_get_payment_sends_access_token(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["access_token"] == "$aact_hmlg_key"
            assert request.url.path.endswith("/payments/pay_123")
            return httpx.Response(200, json={"id": "pay_123", "status": "RECEIVED", "value": 14.99})

        client = AsaasClient(api_key="$aact_hmlg_key", api_url=SANDBOX_URL, transport=httpx.MockTransport(handler))
        payment = await client.get_payment("pay_123")
        assert payment["status"] == "RECEIVED"

    @pytest.mark.asyncio
    async def test_error_description_in_upstream_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"errors": [{"description": "Cliente inválido"}]})

        client = AsaasClient(api_key="key", api_url=SANDBOX_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(UpstreamVerificationError) as exc_info:
            await client.get_payment("pay_1")
        assert "Cliente inválido" in str(exc_info.value)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_api_key(self) -> None:
        client = AsaasClient(api_key=None, api_url=SANDBOX_URL)
        with pytest.raises(GatewayConfigError):
            await client.get_payment("pay_1")

    @pytest.mark.asyncio
    async def test_get_or_create_customer_reuses_existing(self) -> None:
        methods = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            return httpx.Response(200, json={"data": [{"id": "cus_1"}]})

        client = AsaasClient(api_key="key", api_url=SANDBOX_URL, transport=httpx.MockTransport(handler))
        customer = await client.get_or_create_customer(name="Maria", email="maria@example.com")
        assert customer["id"] == "cus_1"
        assert methods == ["GET"]

    def test_infer_api_url(self) -> None:
        assert infer_api_url("$aact_hmlg_abc", production=True) == SANDBOX_URL
        assert infer_api_url("$aact_prod_abc", production=False) == PRODUCTION_URL
        assert infer_api_url(None, production=True) == PRODUCTION_URL
