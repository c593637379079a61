"""
Ödeme mutabakatı: checkout başlatma ve üç bildirim kanalı (tarayıcı dönüşü, IPN,
manuel durum kontrolü). Kanallar aynı sırada gelmeyebilir, tekrar edebilir; defter
(ledger) idempotent olduğu için her txn_ref tek bir finansal etki bırakır.

Kural: defter kaydı checkout anında açılır. Bildirimde kayıt bulunamazsa yeni kayıt
açılmaz; IPN "01 Order not found" döner, diğer kanallar defteri atlar.
"""
import enum
import logging
from datetime import datetime
from typing import Mapping, NamedTuple
from urllib.parse import urlencode

from sqlmodel import Session

from voltsub.core.config import settings
from voltsub.core.errors import AmountMismatch, Conflict, InvalidInput, InvalidSignature, NotFound, PaymentError
from voltsub.models import PaymentTransaction, Subscription, SubscriptionPlan
from voltsub.services import ledger, subscriptions
from voltsub.services.audit import record_audit, record_security_event
from voltsub.services.plans import get_plan
from voltsub.services.vnpay import VerifyContext, VnpayCodec, normalize_fields, resolve_outcome

log = logging.getLogger("voltsub.reconciliation")

SUBSCRIPTION_ORDER_TYPE = "subscription"

# Son görülen gateway alanları -> gateway_details anahtarları
_DETAIL_FIELDS = {
    "vnp_ResponseCode": "responseCode",
    "vnp_TransactionStatus": "transactionStatus",
    "vnp_TransactionNo": "transactionNo",
    "vnp_BankCode": "bankCode",
    "vnp_BankTranNo": "bankTranNo",
    "vnp_CardType": "cardType",
    "vnp_PayDate": "payDate",
    "vnp_Amount": "amount",
    "vnp_OrderInfo": "orderInfo",
    "vnp_TxnRef": "txnRef",
}

REDIRECT_PATHS = {
    "success": "/payment-success",
    "failed": "/payment-failed",
    "cancelled": "/payment-cancelled",
}


class Channel(str, enum.Enum):
    RETURN = "return_url"
    IPN = "ipn"
    CHECK = "check_payment_status"

    @property
    def verify_context(self) -> VerifyContext:
        return VerifyContext.IPN if self is Channel.IPN else VerifyContext.RETURN


class CheckoutResult(NamedTuple):
    url: str
    correlation_key: str
    fields: dict[str, str]
    transaction: PaymentTransaction | None
    subscription: Subscription | None = None
    plan: SubscriptionPlan | None = None


class ReconciliationResult(NamedTuple):
    outcome: str  # success | failed | cancelled
    reason: str
    code: str
    fields: dict[str, str]
    transaction: PaymentTransaction | None
    subscription: Subscription | None
    already_confirmed: bool = False


class IpnAck(NamedTuple):
    rsp_code: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"RspCode": self.rsp_code, "Message": self.message}


ACK_CONFIRMED = IpnAck("00", "Confirm Success")
ACK_ALREADY_CONFIRMED = IpnAck("00", "Already confirmed")
ACK_INVALID_SIGNATURE = IpnAck("97", "Invalid signature")
ACK_ORDER_NOT_FOUND = IpnAck("01", "Order not found")
ACK_AMOUNT_INVALID = IpnAck("04", "Amount invalid")
ACK_UNKNOWN_ERROR = IpnAck("99", "Unknown error")


class Redirect(NamedTuple):
    url: str
    params: dict[str, str]


def start_checkout(
    db: Session,
    codec: VnpayCodec,
    user_id: int,
    amount: int | float,
    order_info: str,
    client_ip: str,
    correlation_key: str | None = None,
    bank_code: str | None = None,
    locale: str = "vn",
    order_type: str = "other",
) -> CheckoutResult:
    """
    Genel ödeme linki: imzalı URL + pending defter kaydı.
    Sadece rakamdan oluşan referanslar abonelik id'lerine ayrılmıştır; istemci seçemez.
    Referans başka bir kayda aitse (Conflict) istek başarısız olur; diğer kayıt hataları loglanır.
    """
    if correlation_key is not None and correlation_key.strip().isdigit():
        raise InvalidInput("orderId must not be purely numeric (reserved for subscription payments)")
    checkout = codec.build_checkout(
        amount,
        order_info,
        client_ip,
        correlation_key=correlation_key,
        bank_code=bank_code,
        locale=locale,
        order_type=order_type,
    )
    txn = None
    try:
        txn = ledger.create(
            db,
            user_id=user_id,
            amount=int(round(amount)),
            method="vnpay",
            description=order_info,
            details={"txnRef": checkout.correlation_key, "orderInfo": order_info},
            metadata={"created_from": "checkout_url", "locale": locale, "order_type": order_type},
            gateway_reference=checkout.correlation_key,
        )
    except Conflict:
        raise
    except PaymentError as e:
        log.error("Pending ledger entry not created: ref=%s error=%s", checkout.correlation_key, e.message)
    return CheckoutResult(checkout.url, checkout.correlation_key, checkout.fields, txn)


def start_subscription_checkout(
    db: Session,
    codec: VnpayCodec,
    user_id: int,
    plan_id: int,
    client_ip: str,
    locale: str = "vn",
    upgrade: bool = False,
) -> CheckoutResult:
    """
    Abonelik ödemesi: pending abonelik -> abonelik id'si txn_ref olarak imzalı URL ->
    pending defter kaydı (meta: subscription_id, plan). upgrade=True ise mevcut
    current_active aboneliğin üstü bir paket olmalı.
    """
    if upgrade:
        sub = subscriptions.upgrade(db, user_id, plan_id)
    else:
        sub = subscriptions.create(db, user_id, plan_id)
    plan = get_plan(db, sub.plan_id, require_active=False)
    key = str(sub.id)
    checkout = codec.build_checkout(
        sub.price,
        f"Subscription {plan.name} #{sub.id}",
        client_ip,
        correlation_key=key,
        locale=locale,
        order_type=SUBSCRIPTION_ORDER_TYPE,
    )
    txn = None
    try:
        txn = ledger.create(
            db,
            user_id=user_id,
            amount=sub.price,
            method="vnpay",
            description=f"Payment for subscription {plan.name}",
            details={"txnRef": key, "orderInfo": checkout.fields["vnp_OrderInfo"]},
            metadata={
                "subscription_id": sub.id,
                "plan_id": plan.id,
                "plan_type": plan.type,
                "plan_duration": plan.duration,
                "upgraded_from": sub.upgraded_from,
                "created_from": "subscription_payment",
            },
            gateway_reference=key,
        )
        sub.transaction_id = txn.id
        db.add(sub)
        db.commit()
        db.refresh(sub)
    except Conflict:
        log.error("Reference %s already bound to another ledger entry; subscription %s not payable", key, sub.id)
        raise
    except PaymentError as e:
        log.error("Pending ledger entry not created for subscription %s: %s", sub.id, e.message)
    return CheckoutResult(checkout.url, key, checkout.fields, txn, sub, plan)


def _details_patch(fields: Mapping[str, str]) -> dict:
    return {name: fields[field] for field, name in _DETAIL_FIELDS.items() if fields.get(field)}


def _metadata_patch(channel: Channel, outcome: str, reason: str) -> dict:
    patch = {"updated_from": channel.value, "updated_at": datetime.utcnow().isoformat()}
    if outcome != "success":
        patch["failure_reason"] = reason
    return patch


def _activate_if_pending(db: Session, subscription_id: int, reference: str | None) -> Subscription | None:
    """Ödeme kaydedildikten sonra aktivasyon; hata loglanır, ödemeyi geri almaz."""
    sub = db.get(Subscription, subscription_id, populate_existing=True)
    if sub is None:
        log.error("Paid subscription %s not found (ref=%s)", subscription_id, reference)
        record_audit("activation_failed", reference=reference, detail=f"subscription {subscription_id} not found")
        return None
    if sub.status != "pending":
        return sub
    try:
        sub = subscriptions.activate(db, subscription_id)
    except PaymentError as e:
        db.rollback()
        log.error("Failed to activate subscription %s after payment: %s", subscription_id, e.message)
        record_audit("activation_failed", user_id=sub.user_id, reference=reference, detail=e.message)
        return db.get(Subscription, subscription_id, populate_existing=True)
    record_audit("subscription_activated", user_id=sub.user_id, reference=reference)
    return sub


def _subscription_id_from(txn: PaymentTransaction | None) -> int | None:
    if txn is None:
        return None
    value = (txn.meta or {}).get("subscription_id")
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def reconcile(
    db: Session,
    codec: VnpayCodec,
    raw_fields: Mapping[str, object] | None,
    channel: Channel,
    subscription_id: int | None = None,
    client_ip: str | None = None,
) -> ReconciliationResult:
    """
    Üç kanalın ortak yolu. Geçersiz imza -> InvalidSignature (hiçbir şey değişmez);
    IPN'de kayıt yok -> NotFound; IPN tutarı tutmuyor -> AmountMismatch (kayıt failed).
    """
    verified = codec.verify(raw_fields, channel.verify_context)
    fields = verified.fields
    reference = fields.get("vnp_TxnRef")
    if not verified.is_valid:
        record_security_event(
            "invalid_signature",
            ip=client_ip,
            endpoint=channel.value,
            detail=f"txn_ref={reference} reason={verified.message}",
        )
        raise InvalidSignature(verified.message, txn_ref=reference)

    outcome = resolve_outcome(verified.code, verified.is_valid)
    txn = ledger.find_by_correlation_key(db, reference)

    if txn is None:
        log.warning("No ledger entry for ref=%s on %s", reference, channel.value)
        if channel is Channel.IPN:
            raise NotFound("Order not found", txn_ref=reference)
    elif channel is Channel.IPN and txn.status == ledger.FINAL_STATUS:
        # Onaylı kayıt değişmez; ama başka tutardaki bildirim "onaylandı" sayılmaz
        if not ledger.check_amount(txn, fields.get("vnp_Amount")):
            log.error(
                "Amount mismatch on confirmed ref=%s: expected=%s received=%s",
                reference, txn.amount * 100, fields.get("vnp_Amount"),
            )
            raise AmountMismatch("Amount invalid", txn_ref=reference)
        return ReconciliationResult(
            "success", outcome.reason, verified.code, fields, txn,
            _load_subscription(db, _subscription_id_from(txn)), already_confirmed=True,
        )
    elif channel is Channel.IPN and outcome.status == "success" and not ledger.check_amount(txn, fields.get("vnp_Amount")):
        ledger.mark_amount_mismatch(
            db, txn.id, expected=txn.amount * 100, received=fields.get("vnp_Amount"), details=_details_patch(fields),
        )
        log.error(
            "Amount mismatch for ref=%s: expected=%s received=%s",
            reference, txn.amount * 100, fields.get("vnp_Amount"),
        )
        record_audit(
            "amount_mismatch",
            user_id=txn.user_id,
            reference=reference,
            detail=f"expected={txn.amount * 100} received={fields.get('vnp_Amount')}",
            ip=client_ip,
        )
        raise AmountMismatch("Amount invalid", txn_ref=reference)

    sub = None
    if txn is not None:
        was_success = txn.status == ledger.FINAL_STATUS
        txn = ledger.apply_outcome(
            db,
            txn.id,
            outcome.status,
            details=_details_patch(fields),
            metadata_patch=_metadata_patch(channel, outcome.status, outcome.reason),
        )
        if txn.status == ledger.FINAL_STATUS and not was_success:
            log.info("Payment confirmed: ref=%s amount=%s via %s", reference, txn.amount, channel.value)
            record_audit("payment_success", user_id=txn.user_id, reference=reference, ip=client_ip)
        linked_id = _subscription_id_from(txn)
        if subscription_id is not None and linked_id is not None and linked_id != subscription_id:
            log.warning("Ref %s belongs to subscription %s, not %s", reference, linked_id, subscription_id)
        target_id = linked_id
        if target_id is not None and txn.status == ledger.FINAL_STATUS:
            sub = _activate_if_pending(db, target_id, reference)
        else:
            sub = _load_subscription(db, target_id if target_id is not None else subscription_id)
    elif subscription_id is not None:
        sub = _load_subscription(db, subscription_id)
        if outcome.status == "success" and sub is not None and _matches_subscription(sub, fields):
            sub = _activate_if_pending(db, sub.id, reference)

    return ReconciliationResult(outcome.status, outcome.reason, verified.code, fields, txn, sub)


def _load_subscription(db: Session, subscription_id: int | None) -> Subscription | None:
    if subscription_id is None:
        return None
    return db.get(Subscription, subscription_id, populate_existing=True)


def _matches_subscription(sub: Subscription, fields: Mapping[str, str]) -> bool:
    """Defter kaydı yokken: txn_ref abonelik id'si ve tutar abonelik fiyatı olmalı."""
    if fields.get("vnp_TxnRef") != str(sub.id):
        log.warning("Ref %s does not match subscription %s; not activating", fields.get("vnp_TxnRef"), sub.id)
        return False
    if fields.get("vnp_Amount") != str(sub.price * 100):
        log.warning("Amount %s does not match subscription %s price", fields.get("vnp_Amount"), sub.id)
        return False
    return True


def handle_return(
    db: Session,
    codec: VnpayCodec,
    raw_fields: Mapping[str, object] | None,
    client_ip: str | None = None,
) -> ReconciliationResult:
    return reconcile(db, codec, raw_fields, Channel.RETURN, client_ip=client_ip)


def handle_ipn(
    db: Session,
    codec: VnpayCodec,
    raw_fields: Mapping[str, object] | None,
    client_ip: str | None = None,
) -> IpnAck:
    """IPN: her durumda VNPay'in beklediği RspCode/Message cevabı döner."""
    try:
        result = reconcile(db, codec, raw_fields, Channel.IPN, client_ip=client_ip)
    except InvalidSignature:
        return ACK_INVALID_SIGNATURE
    except NotFound:
        return ACK_ORDER_NOT_FOUND
    except AmountMismatch:
        return ACK_AMOUNT_INVALID
    except Exception:
        log.exception("IPN processing failed: ref=%s", normalize_fields(raw_fields).get("vnp_TxnRef"))
        db.rollback()
        return ACK_UNKNOWN_ERROR
    if result.already_confirmed:
        return ACK_ALREADY_CONFIRMED
    return ACK_CONFIRMED


def check_status(
    db: Session,
    codec: VnpayCodec,
    raw_fields: Mapping[str, object] | None,
    subscription_id: int | None = None,
    client_ip: str | None = None,
) -> ReconciliationResult:
    """Manuel kontrol: frontend, dönüş URL'sindeki parametreleri tekrar gönderir."""
    if not normalize_fields(raw_fields):
        raise InvalidInput("Missing VNPay return parameters")
    return reconcile(db, codec, raw_fields, Channel.CHECK, subscription_id=subscription_id, client_ip=client_ip)


def build_redirect(outcome: str, raw_fields: Mapping[str, object] | None, subscription_id: int | None) -> Redirect:
    """Frontend yönlendirmesi: /payment-success|failed|cancelled + gelen parametreler + subscriptionId."""
    params = {k: v for k, v in normalize_fields(raw_fields).items() if v != ""}
    if subscription_id is not None:
        params["subscriptionId"] = str(subscription_id)
    base = (settings.frontend_url or "http://localhost:5173").strip().rstrip("/")
    path = REDIRECT_PATHS.get(outcome, REDIRECT_PATHS["failed"])
    url = f"{base}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return Redirect(url, params)
