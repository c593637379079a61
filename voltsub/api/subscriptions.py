from fastapi import APIRouter, Body, Depends, Request
from sqlmodel import Session

from voltsub.api.deps import get_codec, get_current_user
from voltsub.api.payments import result_payload
from voltsub.core.database import get_db
from voltsub.core.errors import InvalidInput, NotFound
from voltsub.core.rate_limit import CHECKOUT_LIMIT, STATUS_CHECK_LIMIT, get_client_ip, limiter
from voltsub.models import Subscription, User
from voltsub.schemas import (
    CancelRequest,
    PlanOut,
    SubscriptionOut,
    SubscriptionPaymentRequest,
    UpgradeRequest,
    dump,
)
from voltsub.services import reconciliation, subscriptions
from voltsub.services.plans import list_active_plans
from voltsub.services.vnpay import VnpayCodec

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])
plans_router = APIRouter(prefix="/subscription-plans", tags=["subscriptions"])


def _owned_subscription(db: Session, subscription_id: int, user: User) -> Subscription:
    sub = db.get(Subscription, subscription_id)
    if sub is None or sub.user_id != user.id:
        raise NotFound("Subscription not found", subscription_id=subscription_id)
    return sub


def _checkout_payload(result: reconciliation.CheckoutResult) -> dict:
    return {
        "paymentUrl": result.url,
        "correlationKey": result.correlation_key,
        "subscriptionId": result.subscription.id,
        "transactionId": result.transaction.id if result.transaction else None,
        "plan": dump(PlanOut, result.plan),
        "subscription": dump(SubscriptionOut, result.subscription),
    }


@plans_router.get("")
def list_plans(db: Session = Depends(get_db)):
    return [dump(PlanOut, p) for p in list_active_plans(db)]


@router.post("/payment")
@limiter.limit(CHECKOUT_LIMIT)
def create_subscription_payment(
    request: Request,
    body: SubscriptionPaymentRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    codec: VnpayCodec = Depends(get_codec),
):
    """Pending abonelik + VNPay ödeme linki. Abonelik ödeme onayıyla aktif olur."""
    result = reconciliation.start_subscription_checkout(
        db, codec, user.id, body.plan_id, get_client_ip(request), locale=body.locale,
    )
    return _checkout_payload(result)


@router.post("/upgrade")
@limiter.limit(CHECKOUT_LIMIT)
def upgrade_subscription(
    request: Request,
    body: UpgradeRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    codec: VnpayCodec = Depends(get_codec),
):
    result = reconciliation.start_subscription_checkout(
        db, codec, user.id, body.plan_id, get_client_ip(request), locale=body.locale, upgrade=True,
    )
    return _checkout_payload(result)


@router.post("/check-payment-status")
@limiter.limit(STATUS_CHECK_LIMIT)
def check_subscription_payment_status(
    request: Request,
    fields: dict = Body(default={}),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    codec: VnpayCodec = Depends(get_codec),
):
    """Dönüş parametreleri + subscriptionId; frontend için yönlendirme adresi de döner."""
    gateway_fields = dict(fields)
    raw_id = gateway_fields.pop("subscriptionId", None)
    if raw_id in (None, ""):
        raise InvalidInput("subscriptionId is required")
    try:
        subscription_id = int(raw_id)
    except (TypeError, ValueError):
        raise InvalidInput("subscriptionId must be an integer")
    _owned_subscription(db, subscription_id, user)

    result = reconciliation.check_status(
        db, codec, gateway_fields, subscription_id=subscription_id, client_ip=get_client_ip(request),
    )
    redirect = reconciliation.build_redirect(result.outcome, gateway_fields, subscription_id)
    payload = result_payload(result)
    payload["subscriptionId"] = subscription_id
    payload["redirect"] = {"url": redirect.url, "params": redirect.params}
    return payload


@router.get("/my-subscriptions")
def my_subscriptions(
    status: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [dump(SubscriptionOut, s) for s in subscriptions.list_for_user(db, user.id, status=status)]


@router.get("/current-active")
def current_active_subscription(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"subscription": dump(SubscriptionOut, subscriptions.current_active(db, user.id))}


@router.get("/{subscription_id}")
def get_subscription(
    subscription_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return dump(SubscriptionOut, _owned_subscription(db, subscription_id, user))


@router.post("/{subscription_id}/cancel")
def cancel_subscription(
    subscription_id: int,
    body: CancelRequest | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """İptal: end_date'e kadar kullanılabilir, otomatik yenileme kapanır."""
    _owned_subscription(db, subscription_id, user)
    reason = (body.reason if body else None) or "User cancelled"
    sub = subscriptions.cancel(db, subscription_id, reason=reason)
    return {
        "message": "Subscription cancelled; it stays usable until its end date.",
        "subscription": dump(SubscriptionOut, sub),
    }
