from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pflix_billing import models
from pflix_billing.db import SessionLocal, settings
from pflix_billing.domain.billing.enums import SubscriptionStatus
from pflix_billing.domain.billing.periods import as_utc, utcnow
from pflix_billing.domain.billing.plans import plan_config
from pflix_billing.domain.billing.state import sources_for
from pflix_billing.schemas import SubscriptionDetailsOut

logger = logging.getLogger(__name__)


def get_or_create_subscription(db: Session, user: models.User, plan: models.Plan) -> models.Subscription:
    """Returns the user's subscription, creating it PENDING on first checkout.

    An existing subscription keeps its status; only the chosen plan and price
    follow the new checkout.
    """
    config = plan_config(plan)
    subscription = (
        db.query(models.Subscription)
        .filter(models.Subscription.user_id == user.id)
        .first()
    )
    if subscription:
        subscription.plan = plan
        subscription.price_cents = config.price_cents
        db.commit()
        return subscription

    subscription = models.Subscription(
        id=str(uuid.uuid4()),
        user_id=user.id,
        status=SubscriptionStatus.pending,
        plan=plan,
        price_cents=config.price_cents,
    )
    db.add(subscription)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        subscription = (
            db.query(models.Subscription)
            .filter(models.Subscription.user_id == user.id)
            .one()
        )
    db.refresh(subscription)
    return subscription


def _is_active(subscription: models.Subscription | None, now: datetime) -> bool:
    if not subscription or subscription.status != SubscriptionStatus.active:
        return False
    if subscription.current_period_end is None:
        return False
    return as_utc(subscription.current_period_end) > now


def has_active_subscription(db: Session, user_id: str, *, now: datetime | None = None) -> bool:
    subscription = (
        db.query(models.Subscription)
        .filter(models.Subscription.user_id == user_id)
        .first()
    )
    return _is_active(subscription, now or utcnow())


def subscription_details(db: Session, user_id: str, *, now: datetime | None = None) -> SubscriptionDetailsOut:
    now = now or utcnow()
    subscription = (
        db.query(models.Subscription)
        .filter(models.Subscription.user_id == user_id)
        .first()
    )
    if not subscription:
        return SubscriptionDetailsOut(active=False)

    config = plan_config(subscription.plan)
    period_end = as_utc(subscription.current_period_end) if subscription.current_period_end else None
    active = _is_active(subscription, now)
    days_left = None
    if active and period_end:
        days_left = max(0, (period_end - now).days)
    return SubscriptionDetailsOut(
        active=active,
        status=subscription.status,
        plan=subscription.plan,
        plan_name=config.name,
        screens=config.screens,
        current_period_end=period_end,
        days_left=days_left,
    )


def expired_subscription_ids(db: Session, now: datetime) -> list[str]:
    rows = (
        db.query(models.Subscription.id)
        .filter(
            models.Subscription.status == SubscriptionStatus.active,
            models.Subscription.current_period_end.isnot(None),
            models.Subscription.current_period_end < now,
        )
        .all()
    )
    return [row.id for row in rows]


def expire_subscriptions(db: Session, *, now: datetime | None = None) -> int:
    """ACTIVE subscriptions whose period ended move to EXPIRED.

    The conditional UPDATE races safely with a payment webhook re-activating the
    same row: whichever commits second sees the other's status.
    """
    now = now or utcnow()
    result = db.execute(
        update(models.Subscription)
        .where(
            models.Subscription.status.in_(sources_for(SubscriptionStatus.expired)),
            models.Subscription.current_period_end.isnot(None),
            models.Subscription.current_period_end < now,
        )
        .values(status=SubscriptionStatus.expired)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0


async def expire_subscriptions_once() -> None:
    db = SessionLocal()
    try:
        expired = expire_subscriptions(db)
        if expired:
            logger.info("Subscription expiry sweep expired=%s", expired)
    finally:
        db.close()


async def run_subscription_expiry_loop() -> None:
    if not settings.subscription_expiry_enabled:
        logger.info("Subscription expiry sweep disabled")
        return
    interval = max(1, settings.subscription_expiry_interval_minutes) * 60
    while True:
        try:
            await expire_subscriptions_once()
        except Exception:
            logger.exception("Subscription expiry sweep failed")
        await asyncio.sleep(interval)
