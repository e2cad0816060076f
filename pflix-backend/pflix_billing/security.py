import hmac
import logging

from fastapi import HTTPException, Request, status

from pflix_billing.db import settings

logger = logging.getLogger(__name__)

INTER_TOKEN_HEADERS = ("x-webhook-token", "x-inter-webhook-token", "inter-webhook-token")
ASAAS_TOKEN_HEADERS = ("asaas-access-token",)
BILLING_API_TOKEN_HEADERS = ("x-billing-api-token",)


def _presented_token(request: Request, header_names: tuple[str, ...]) -> str | None:
    for name in header_names:
        value = request.headers.get(name)
        if value and value.strip():
            return value.strip()
    return None


def verify_webhook_token(
    request: Request,
    *,
    expected: str | None,
    header_names: tuple[str, ...],
    provider: str,
) -> None:
    """Shared-secret check for gateway callbacks.

    Without a configured token the check is skipped outside production; in
    production a missing token is a server misconfiguration.
    """
    if not expected:
        if settings.IS_PRODUCTION:
            logger.error("Webhook token not configured provider=%s", provider)
            raise HTTPException(status_code=500, detail="Webhook token not configured")
        return

    presented = _presented_token(request, header_names)
    if not presented:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing webhook token")
    if not hmac.compare_digest(presented.encode(), expected.encode()):
        logger.warning("Webhook token rejected provider=%s path=%s", provider, request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook token")


def verify_inter_pix_token(request: Request) -> None:
    verify_webhook_token(
        request,
        expected=settings.INTER_PIX_WEBHOOK_TOKEN,
        header_names=INTER_TOKEN_HEADERS,
        provider="inter_pix",
    )


def verify_inter_boleto_token(request: Request) -> None:
    verify_webhook_token(
        request,
        expected=settings.INTER_BOLETO_WEBHOOK_TOKEN,
        header_names=INTER_TOKEN_HEADERS,
        provider="inter_boleto",
    )


def verify_asaas_token(request: Request) -> None:
    verify_webhook_token(
        request,
        expected=settings.ASAAS_WEBHOOK_TOKEN,
        header_names=ASAAS_TOKEN_HEADERS,
        provider="asaas",
    )


def verify_billing_api_token(request: Request) -> None:
    verify_webhook_token(
        request,
        expected=settings.billing_api_token,
        header_names=BILLING_API_TOKEN_HEADERS,
        provider="billing_api",
    )
