from __future__ import annotations

import asyncio
import logging

import httpx

from pflix_billing.db import settings
from pflix_billing.domain.billing.money import format_brl
from pflix_billing.services.reconciliation import PaymentNotice

logger = logging.getLogger(__name__)

MAILJET_SEND_URL = "https://api.mailjet.com/v3.1/send"


def _display_date(notice: PaymentNotice) -> str:
    if not notice.period_end:
        return "-"
    return notice.period_end.strftime("%d/%m/%Y")


def render_notice(notice: PaymentNotice, app_url: str) -> tuple[str, str, str]:
    """Subject, text and html bodies for a payment notice."""
    name = notice.to_name or "assinante"
    amount = format_brl(notice.value_cents)
    if notice.kind == "overdue":
        subject = "Pflix - pagamento em atraso"
        text = (
            f"Olá, {name}!\n\n"
            f"Não identificamos o pagamento de {amount} do {notice.plan_name}.\n"
            f"Regularize para continuar assistindo: {app_url}\n"
        )
    else:
        subject = "Pflix - pagamento confirmado"
        text = (
            f"Olá, {name}!\n\n"
            f"Recebemos o pagamento de {amount} do {notice.plan_name}.\n"
            f"Sua assinatura está ativa até {_display_date(notice)}.\n"
            f"Acesse: {app_url}\n"
        )
    html = "".join(f"<p>{line}</p>" for line in text.strip().split("\n") if line)
    return subject, text, html


class MailjetNotifier:
    def __init__(
        self,
        *,
        api_key: str | None,
        secret_key: str | None,
        from_email: str | None,
        from_name: str = "Pflix",
        app_url: str = "https://pflix.com.br",
        transport: httpx.AsyncBaseTransport | None = None,
        backoffs: tuple[float, ...] = (0.5, 1.0),
    ) -> None:
        self.api_key = api_key
        self.secret_key = secret_key
        self.from_email = from_email
        self.from_name = from_name
        self.app_url = app_url
        self._transport = transport
        self.backoffs = backoffs

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.secret_key and self.from_email)

    async def send_mail(self, *, to: str, subject: str, text: str, html: str | None = None) -> bool:
        if not self.enabled:
            logger.info("Mailjet not configured, skipping mail to=%s subject=%s", to, subject)
            return False
        message = {
            "From": {"Email": self.from_email, "Name": self.from_name},
            "To": [{"Email": to}],
            "Subject": subject,
            "TextPart": text,
        }
        if html:
            message["HTMLPart"] = html
        payload = {"Messages": [message]}

        for attempt in range(len(self.backoffs) + 1):
            try:
                async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                    response = await client.post(
                        MAILJET_SEND_URL,
                        json=payload,
                        auth=(self.api_key, self.secret_key),
                    )
                    response.raise_for_status()
                    return True
            except httpx.HTTPStatusError as exc:
                logger.warning(
                    "Mailjet send failed (attempt %s) status=%s body=%s",
                    attempt + 1,
                    exc.response.status_code,
                    exc.response.text[:500],
                )
            except httpx.HTTPError:
                logger.exception("Failed to send Mailjet message (attempt %s)", attempt + 1)
            if attempt < len(self.backoffs):
                await asyncio.sleep(self.backoffs[attempt])
        return False

    async def deliver(self, notice: PaymentNotice) -> None:
        try:
            subject, text, html = render_notice(notice, self.app_url)
            sent = await self.send_mail(to=notice.to_email, subject=subject, text=text, html=html)
        except Exception:
            logger.exception("Payment notice failed reference=%s", notice.reference)
            return
        if sent:
            logger.info("Payment notice sent kind=%s reference=%s", notice.kind, notice.reference)


_notifier: MailjetNotifier | None = None


# Dependency
def get_notifier() -> MailjetNotifier:
    global _notifier
    if _notifier is None:
        _notifier = MailjetNotifier(
            api_key=settings.mailjet_api_key,
            secret_key=settings.mailjet_secret_key,
            from_email=settings.mailjet_from_email,
            from_name=settings.mailjet_from_name,
            app_url=settings.app_public_url,
        )
    return _notifier
