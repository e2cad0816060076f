import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from pflix_billing.db import get_db
from pflix_billing.domain.billing.payloads import (
    cobranca_value_hint,
    extract_codigo_solicitacao,
    extract_pix_items,
)
from pflix_billing.observability import record_webhook_actions
from pflix_billing.security import verify_inter_boleto_token, verify_inter_pix_token
from pflix_billing.services.gateways.errors import GatewayConfigError, UpstreamVerificationError
from pflix_billing.services.gateways.inter import InterClient, get_inter_client
from pflix_billing.services.notifier import MailjetNotifier, get_notifier
from pflix_billing.services.reconciliation import reconcile_inter_cobranca, reconcile_inter_pix

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/inter", tags=["webhooks"])

UPSTREAM_FAILED = "upstream_failed"


async def _read_json(request: Request):
    raw_body = await request.body()
    try:
        return json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON") from exc


def _upstream_failure(ref: str, ref_key: str) -> dict:
    return {"ref": ref, ref_key: ref, "error": UPSTREAM_FAILED}


def _respond(request: Request, results: list[dict], background_tasks: BackgroundTasks, *, upstream_failed: bool):
    """502 asks the provider to redeliver; notices already queued still go out."""
    record_webhook_actions(request, results)
    content = {"received": True, "results": results}
    if upstream_failed:
        return JSONResponse(status_code=502, content=content, background=background_tasks)
    return content


@router.get("/pix")
def inter_pix_webhook_health():
    return {"status": "ok", "provider": "inter", "endpoint": "/webhooks/inter/pix"}


@router.post("/pix")
async def inter_pix_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    inter: InterClient = Depends(get_inter_client),
    notifier: MailjetNotifier = Depends(get_notifier),
):
    verify_inter_pix_token(request)
    payload = await _read_json(request)

    results = []
    upstream_failed = False
    for item in extract_pix_items(payload):
        try:
            result = await reconcile_inter_pix(db, inter, item, payload)
        except (UpstreamVerificationError, GatewayConfigError) as exc:
            logger.warning("Inter Pix re-verification failed txid=%s: %s", item.txid, exc)
            upstream_failed = True
            results.append(_upstream_failure(item.txid, "txid"))
            continue
        if result.notice:
            background_tasks.add_task(notifier.deliver, result.notice)
        results.append(result.as_dict("txid"))
    return _respond(request, results, background_tasks, upstream_failed=upstream_failed)


@router.get("/cobranca")
def inter_cobranca_webhook_health():
    return {"status": "ok", "provider": "inter", "endpoint": "/webhooks/inter/cobranca"}


@router.post("/cobranca")
async def inter_cobranca_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    inter: InterClient = Depends(get_inter_client),
    notifier: MailjetNotifier = Depends(get_notifier),
):
    verify_inter_boleto_token(request)
    payload = await _read_json(request)

    results = []
    upstream_failed = False
    for codigo in extract_codigo_solicitacao(payload):
        try:
            result = await reconcile_inter_cobranca(
                db,
                inter,
                codigo,
                value_hint=cobranca_value_hint(payload, codigo),
            )
        except (UpstreamVerificationError, GatewayConfigError) as exc:
            logger.warning("Inter cobranca re-verification failed codigoSolicitacao=%s: %s", codigo, exc)
            upstream_failed = True
            results.append(_upstream_failure(codigo, "codigoSolicitacao"))
            continue
        if result.notice:
            background_tasks.add_task(notifier.deliver, result.notice)
        results.append(result.as_dict("codigoSolicitacao"))
    return _respond(request, results, background_tasks, upstream_failed=upstream_failed)
