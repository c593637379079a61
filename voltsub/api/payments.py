"""VNPay uçları: ödeme linki, tarayıcı dönüşü, IPN, manuel durum kontrolü."""
from fastapi import APIRouter, Body, Depends, Request
from sqlmodel import Session

from voltsub.api.deps import get_codec, get_current_user
from voltsub.core.database import get_db
from voltsub.core.rate_limit import CHECKOUT_LIMIT, STATUS_CHECK_LIMIT, get_client_ip, limiter
from voltsub.models import User
from voltsub.schemas import CheckoutUrlRequest, IpnAckOut, SubscriptionOut, TransactionOut, dump
from voltsub.services import reconciliation
from voltsub.services.vnpay import VnpayCodec

router = APIRouter(prefix="/vnpay", tags=["vnpay"])


def result_payload(result: reconciliation.ReconciliationResult) -> dict:
    return {
        "success": result.outcome == "success",
        "isValid": True,
        "outcome": result.outcome,
        "reason": result.reason,
        "responseCode": result.code,
        "params": result.fields,
        "transaction": dump(TransactionOut, result.transaction),
        "subscription": dump(SubscriptionOut, result.subscription),
    }


@router.post("/checkout-url")
@limiter.limit(CHECKOUT_LIMIT)
def create_checkout_url(
    request: Request,
    body: CheckoutUrlRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    codec: VnpayCodec = Depends(get_codec),
):
    result = reconciliation.start_checkout(
        db,
        codec,
        user_id=user.id,
        amount=body.amount,
        order_info=body.order_info,
        client_ip=get_client_ip(request),
        correlation_key=body.order_id,
        bank_code=body.bank_code,
        locale=body.locale,
        order_type=body.order_type,
    )
    return {
        "paymentUrl": result.url,
        "correlationKey": result.correlation_key,
        "signedFields": result.fields,
        "transactionId": result.transaction.id if result.transaction else None,
    }


@router.get("/return")
def vnpay_return(
    request: Request,
    db: Session = Depends(get_db),
    codec: VnpayCodec = Depends(get_codec),
):
    """Kullanıcı VNPay'den döndüğünde (vnp_ReturnUrl)."""
    result = reconciliation.handle_return(db, codec, dict(request.query_params), client_ip=get_client_ip(request))
    return result_payload(result)


@router.get("/ipn", response_model=IpnAckOut)
def vnpay_ipn(
    request: Request,
    db: Session = Depends(get_db),
    codec: VnpayCodec = Depends(get_codec),
):
    """VNPay sunucu bildirimi: her durumda HTTP 200 + RspCode."""
    ack = reconciliation.handle_ipn(db, codec, dict(request.query_params), client_ip=get_client_ip(request))
    return ack.as_dict()


@router.post("/check-payment-status")
@limiter.limit(STATUS_CHECK_LIMIT)
def vnpay_check_payment_status(
    request: Request,
    fields: dict = Body(default={}),
    db: Session = Depends(get_db),
    codec: VnpayCodec = Depends(get_codec),
):
    """Frontend dönüş parametrelerini tekrar gönderir (IPN gecikirse)."""
    result = reconciliation.check_status(db, codec, fields, client_ip=get_client_ip(request))
    return result_payload(result)
