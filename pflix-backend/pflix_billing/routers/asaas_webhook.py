import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from pflix_billing.db import get_db
from pflix_billing.observability import record_webhook_actions
from pflix_billing.schemas import AsaasWebhookPayload
from pflix_billing.security import verify_asaas_token
from pflix_billing.services.gateways.asaas import AsaasClient, get_asaas_client
from pflix_billing.services.gateways.errors import GatewayConfigError, UpstreamVerificationError
from pflix_billing.services.notifier import MailjetNotifier, get_notifier
from pflix_billing.services.reconciliation import reconcile_asaas

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/asaas", tags=["webhooks"])


@router.get("")
def asaas_webhook_health():
    return {"status": "ok", "provider": "asaas", "endpoint": "/webhooks/asaas"}


@router.post("")
async def asaas_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    asaas: AsaasClient = Depends(get_asaas_client),
    notifier: MailjetNotifier = Depends(get_notifier),
):
    verify_asaas_token(request)
    raw_body = await request.body()
    try:
        payload = AsaasWebhookPayload.model_validate(json.loads(raw_body.decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON") from exc

    if payload.payment is None:
        logger.info("Asaas webhook without payment event=%s", payload.event)
        return {"received": True, "results": []}

    try:
        result = await reconcile_asaas(db, asaas, payload.event, payload.payment)
    except (UpstreamVerificationError, GatewayConfigError) as exc:
        logger.warning("Asaas re-verification failed payment=%s: %s", payload.payment.id, exc)
        raise HTTPException(status_code=502, detail="Upstream verification failed") from exc

    if result.notice:
        background_tasks.add_task(notifier.deliver, result.notice)
    results = [result.as_dict("paymentId")]
    record_webhook_actions(request, results)
    return {"received": True, "results": results}
