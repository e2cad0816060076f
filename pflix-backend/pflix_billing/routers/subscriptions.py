"""
Router de assinaturas: consulta de status e emissão de cobranças.
A lógica de cobrança e persistência fica em pflix_billing.services.charges.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from pflix_billing import models, schemas
from pflix_billing.db import get_db
from pflix_billing.security import verify_billing_api_token
from pflix_billing.services.charges import (
    ASAAS_BILLING_TYPES,
    ChargeError,
    issue_asaas_charge,
    issue_inter_pix_charge,
)
from pflix_billing.services.gateways.asaas import AsaasClient, get_asaas_client
from pflix_billing.services.gateways.errors import GatewayError
from pflix_billing.services.gateways.inter import InterClient, get_inter_client
from pflix_billing.services.subscriptions import subscription_details

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])
logger = logging.getLogger(__name__)

PROVIDER_BILLING_TYPES = {
    "asaas": ASAAS_BILLING_TYPES,
    "inter": (models.BillingType.pix,),
}


def _get_user(db: Session, user_id: str) -> models.User:
    user = db.get(models.User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/{user_id}", response_model=schemas.SubscriptionDetailsOut)
def get_subscription(user_id: str, request: Request, db: Session = Depends(get_db)):
    verify_billing_api_token(request)
    _get_user(db, user_id)
    return subscription_details(db, user_id)


@router.post("/{user_id}/charges", response_model=schemas.ChargeOut, status_code=status.HTTP_201_CREATED)
async def create_charge(
    user_id: str,
    payload: schemas.ChargeIn,
    request: Request,
    db: Session = Depends(get_db),
    asaas: AsaasClient = Depends(get_asaas_client),
    inter: InterClient = Depends(get_inter_client),
):
    verify_billing_api_token(request)
    user = _get_user(db, user_id)
    if payload.billing_type not in PROVIDER_BILLING_TYPES[payload.provider]:
        raise HTTPException(status_code=400, detail=f"{payload.billing_type.value} not offered by {payload.provider}")

    try:
        if payload.provider == "inter":
            return await issue_inter_pix_charge(db, inter, user, payload.plan)
        return await issue_asaas_charge(
            db,
            asaas,
            user,
            payload.plan,
            billing_type=payload.billing_type,
            due_date=payload.due_date,
        )
    except ChargeError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except GatewayError as exc:
        logger.warning("Charge issuance failed provider=%s user=%s: %s", payload.provider, user_id, exc)
        raise HTTPException(status_code=502, detail="Payment gateway unavailable") from exc
