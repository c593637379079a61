"""Destek/admin uçları (X-Admin-Secret)."""
import logging

from fastapi import APIRouter, Depends
from sqlmodel import Session

from voltsub.api.deps import require_admin
from voltsub.core.database import get_db
from voltsub.schemas import AdminCreateSubscriptionRequest, SubscriptionOut, dump
from voltsub.services import subscriptions
from voltsub.services.audit import record_audit

log = logging.getLogger("voltsub.admin")

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/subscriptions")
def admin_create_subscription(body: AdminCreateSubscriptionRequest, db: Session = Depends(get_db)):
    """Ödeme dışı abonelik (nakit, kampanya). activate=True ise hemen current_active olur."""
    sub = subscriptions.create(
        db,
        body.user_id,
        body.plan_id,
        auto_renew=body.auto_renew,
        price_override=body.custom_price,
    )
    if body.activate:
        sub = subscriptions.activate(db, sub.id)
    record_audit("admin_subscription_created", user_id=body.user_id, reference=str(sub.id))
    return dump(SubscriptionOut, sub)


@router.post("/subscriptions/sweep")
def admin_sweep_expirations(db: Session = Depends(get_db)):
    counts = subscriptions.sweep_expirations(db)
    log.info("Admin sweep: %s", counts)
    return counts


@router.post("/subscriptions/{subscription_id}/activate")
def admin_activate_subscription(subscription_id: int, db: Session = Depends(get_db)):
    sub = subscriptions.activate(db, subscription_id)
    record_audit("admin_subscription_activated", user_id=sub.user_id, reference=str(sub.id))
    return dump(SubscriptionOut, sub)
