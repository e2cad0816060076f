"""Testes dos endpoints de webhook (autenticação, formatos e respostas)."""

import asyncio

import httpx
import pytest

from conftest import load, make_payment, make_pix_payment, make_subscription, make_user
from pflix_billing import models
from pflix_billing.db import settings
from pflix_billing.domain.billing.enums import BillingType, PixPaymentStatus, SubscriptionStatus
from pflix_billing.services.gateways.errors import GatewayConfigError, UpstreamVerificationError

TOKEN = "s3cr3t-webhook-token-0001"
CODIGO = "3f2b6c1e-9a4d-4c7e-8b2a-1d5e6f7a8b9c"


class TestInterPixEndpoint:
    def test_paid_delivery(self, client, inter_gateway, notifier) -> None:
        subscription = make_subscription()
        make_pix_payment(subscription, txid="tx-http")
        inter_gateway.get_pix_cob.return_value = {"status": "CONCLUIDA", "valor": {"original": "14.99"}}

        response = client.post("/webhooks/inter/pix", json={"pix": [{"txid": "tx-http", "valor": "14.99"}]})

        assert response.status_code == 200
        assert response.json() == {
            "received": True,
            "results": [{"ref": "tx-http", "txid": "tx-http", "action": "paid"}],
        }
        assert load(models.Subscription, subscription.id).status == SubscriptionStatus.active
        notifier.deliver.assert_awaited_once()
        assert response.headers["X-Request-Id"]

    def test_batch_reports_each_reference(self, client, inter_gateway) -> None:
        subscription = make_subscription()
        make_pix_payment(subscription, txid="tx-a")
        make_pix_payment(make_subscription(), txid="tx-b", paid_at=None)
        inter_gateway.get_pix_cob.return_value = {"status": "CONCLUIDA", "valor": {"original": "14.99"}}

        response = client.post("/webhooks/inter/pix", json=[{"txid": "tx-a"}, {"txid": "tx-b"}, {"txid": "tx-x"}])

        actions = {item["txid"]: item["action"] for item in response.json()["results"]}
        assert actions == {"tx-a": "paid", "tx-b": "paid", "tx-x": "not_found"}

    def test_unknown_txid_is_still_200(self, client, inter_gateway, notifier) -> None:
        response = client.post("/webhooks/inter/pix", json={"pix": [{"txid": "nope"}]})

        assert response.status_code == 200
        assert response.json()["results"] == [{"ref": "nope", "txid": "nope", "action": "not_found"}]
        notifier.deliver.assert_not_awaited()

    def test_invalid_json_is_400(self, client) -> None:
        response = client.post(
            "/webhooks/inter/pix", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400

    def test_upstream_failure_is_502_and_nothing_changes(self, client, inter_gateway) -> None:
        pix = make_pix_payment(make_subscription(), txid="tx-502")
        inter_gateway.get_pix_cob.side_effect = UpstreamVerificationError("down", provider="inter")

        response = client.post("/webhooks/inter/pix", json={"pix": [{"txid": "tx-502"}]})

        assert response.status_code == 502
        assert load(models.PixPayment, pix.id).status == PixPaymentStatus.pending

    def test_missing_credentials_is_502(self, client, inter_gateway) -> None:
        make_pix_payment(make_subscription(), txid="tx-cfg")
        inter_gateway.get_pix_cob.side_effect = GatewayConfigError("no creds", provider="inter")

        response = client.post("/webhooks/inter/pix", json={"pix": [{"txid": "tx-cfg"}]})

        assert response.status_code == 502

    def test_upstream_failure_mid_batch_keeps_siblings_and_notices(self, client, inter_gateway, notifier) -> None:
        first = make_subscription()
        last = make_subscription()
        make_pix_payment(first, txid="tx-ok")
        down = make_pix_payment(make_subscription(), txid="tx-down")
        make_pix_payment(last, txid="tx-after")

        async def get_pix_cob(txid):
            if txid == "tx-down":
                raise UpstreamVerificationError("down", provider="inter")
            return {"status": "CONCLUIDA", "valor": {"original": "14.99"}}

        inter_gateway.get_pix_cob.side_effect = get_pix_cob

        response = client.post(
            "/webhooks/inter/pix", json={"pix": [{"txid": "tx-ok"}, {"txid": "tx-down"}, {"txid": "tx-after"}]}
        )

        assert response.status_code == 502
        assert response.json()["results"] == [
            {"ref": "tx-ok", "txid": "tx-ok", "action": "paid"},
            {"ref": "tx-down", "txid": "tx-down", "error": "upstream_failed"},
            {"ref": "tx-after", "txid": "tx-after", "action": "paid"},
        ]
        assert notifier.deliver.await_count == 2
        assert load(models.Subscription, first.id).status == SubscriptionStatus.active
        assert load(models.Subscription, last.id).status == SubscriptionStatus.active
        assert load(models.PixPayment, down.id).status == PixPaymentStatus.pending

        inter_gateway.get_pix_cob.side_effect = None
        inter_gateway.get_pix_cob.return_value = {"status": "CONCLUIDA", "valor": {"original": "14.99"}}
        retry = client.post(
            "/webhooks/inter/pix", json={"pix": [{"txid": "tx-ok"}, {"txid": "tx-down"}, {"txid": "tx-after"}]}
        )

        assert retry.status_code == 200
        actions = [item["action"] for item in retry.json()["results"]]
        assert actions == ["already_paid", "paid", "already_paid"]
        assert notifier.deliver.await_count == 3

    def test_health_probe(self, client) -> None:
        response = client.get("/webhooks/inter/pix")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestWebhookAuthentication:
    def test_wrong_token_is_401_without_processing(self, client, inter_gateway, monkeypatch) -> None:
        monkeypatch.setattr(settings, "inter_webhook_token", TOKEN)
        pix = make_pix_payment(make_subscription(), txid="tx-auth")

        response = client.post(
            "/webhooks/inter/pix",
            json={"pix": [{"txid": "tx-auth"}]},
            headers={"x-webhook-token": "wrong-token-value-123"},
        )

        assert response.status_code == 401
        inter_gateway.get_pix_cob.assert_not_awaited()
        assert load(models.PixPayment, pix.id).status == PixPaymentStatus.pending

    def test_missing_token_is_401(self, client, monkeypatch) -> None:
        monkeypatch.setattr(settings, "inter_boleto_webhook_token", TOKEN)

        response = client.post("/webhooks/inter/cobranca", json={"codigoSolicitacao": CODIGO})

        assert response.status_code == 401

    @pytest.mark.parametrize("header", ["x-webhook-token", "x-inter-webhook-token", "inter-webhook-token"])
    def test_accepted_token_headers(self, client, monkeypatch, header) -> None:
        monkeypatch.setattr(settings, "inter_webhook_token", TOKEN)

        response = client.post("/webhooks/inter/pix", json={"pix": []}, headers={header: TOKEN})

        assert response.status_code == 200
        assert response.json() == {"received": True, "results": []}

    def test_production_requires_token(self, client, monkeypatch) -> None:
        monkeypatch.setattr(settings, "app_env", "production")

        response = client.post("/webhooks/inter/pix", json={"pix": []})

        assert response.status_code == 500

    def test_asaas_token_header(self, client, monkeypatch) -> None:
        monkeypatch.setattr(settings, "asaas_webhook_token", TOKEN)

        rejected = client.post("/webhooks/asaas", json={"event": "PAYMENT_CREATED"})
        accepted = client.post(
            "/webhooks/asaas", json={"event": "PAYMENT_CREATED"}, headers={"asaas-access-token": TOKEN}
        )

        assert rejected.status_code == 401
        assert accepted.status_code == 200


class TestInterCobrancaEndpoint:
    def test_nested_codigo_is_reconciled(self, client, inter_gateway) -> None:
        subscription = make_subscription()
        make_payment(subscription, external_ref=CODIGO, billing_type=BillingType.boleto)
        inter_gateway.get_cobranca_detalhe.return_value = {
            "cobranca": {"situacao": "RECEBIDO", "valorTotalRecebido": "14.99"}
        }

        response = client.post("/webhooks/inter/cobranca", json=[{"evento": {"cobranca": {"id": CODIGO}}}])

        assert response.status_code == 200
        assert response.json()["results"] == [
            {"ref": CODIGO, "codigoSolicitacao": CODIGO, "action": "paid", "situacao": "RECEBIDO"}
        ]
        inter_gateway.get_cobranca_detalhe.assert_awaited_once_with(CODIGO)

    def test_em_processamento_is_ignored(self, client, inter_gateway) -> None:
        make_payment(make_subscription(), external_ref=CODIGO, billing_type=BillingType.boleto)
        inter_gateway.get_cobranca_detalhe.return_value = {"situacao": "EM_PROCESSAMENTO"}

        response = client.post("/webhooks/inter/cobranca", json={"codigoSolicitacao": CODIGO})

        assert response.json()["results"][0]["action"] == "ignored"

    def test_health_probe(self, client) -> None:
        assert client.get("/webhooks/inter/cobranca").json()["endpoint"] == "/webhooks/inter/cobranca"


class TestAsaasEndpoint:
    def test_confirmed_payment(self, client, asaas_gateway, notifier) -> None:
        subscription = make_subscription()
        make_payment(subscription, external_ref="pay_http")
        asaas_gateway.get_payment.return_value = {"id": "pay_http", "status": "CONFIRMED", "value": 14.99}

        response = client.post(
            "/webhooks/asaas",
            json={"event": "PAYMENT_CONFIRMED", "payment": {"id": "pay_http", "value": 14.99, "status": "CONFIRMED"}},
        )

        assert response.status_code == 200
        assert response.json() == {
            "received": True,
            "results": [{"ref": "pay_http", "paymentId": "pay_http", "action": "paid"}],
        }
        notifier.deliver.assert_awaited_once()

    def test_event_without_payment(self, client) -> None:
        response = client.post("/webhooks/asaas", json={"event": "SUBSCRIPTION_CREATED"})
        assert response.json() == {"received": True, "results": []}

    def test_malformed_payment_is_400(self, client) -> None:
        response = client.post("/webhooks/asaas", json={"event": "PAYMENT_RECEIVED", "payment": {"value": 1}})
        assert response.status_code == 400

    def test_upstream_failure_is_502(self, client, asaas_gateway) -> None:
        make_payment(make_subscription(), external_ref="pay_down")
        asaas_gateway.get_payment.side_effect = UpstreamVerificationError("timeout", provider="asaas")

        response = client.post(
            "/webhooks/asaas", json={"event": "PAYMENT_RECEIVED", "payment": {"id": "pay_down", "value": 14.99}}
        )

        assert response.status_code == 502

    def test_health_probes(self, client) -> None:
        assert client.get("/webhooks/asaas").json()["provider"] == "asaas"
        assert client.get("/health").json() == {"ok": True}


@pytest.mark.asyncio
async def test_concurrent_http_deliveries_pay_once(app, inter_gateway, notifier) -> None:
    user = make_user()
    subscription = make_subscription(user)
    make_pix_payment(subscription, txid="tx-concurrent")

    async def slow_cob(txid):
        await asyncio.sleep(0)
        return {"status": "CONCLUIDA", "valor": {"original": "14.99"}}

    inter_gateway.get_pix_cob.side_effect = slow_cob
    body = {"pix": [{"txid": "tx-concurrent", "valor": "14.99"}]}

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        first, second = await asyncio.gather(
            http.post("/webhooks/inter/pix", json=body),
            http.post("/webhooks/inter/pix", json=body),
        )

    actions = sorted([first.json()["results"][0]["action"], second.json()["results"][0]["action"]])
    assert actions == ["already_paid", "paid"]
    assert notifier.deliver.await_count == 1
    sub = load(models.Subscription, subscription.id)
    assert sub.status == SubscriptionStatus.active
    assert sub.last_gateway_payment_ref == "tx-concurrent"
