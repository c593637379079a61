"""
Ödeme defteri (PaymentTransaction) durum makinesi.

Durum sadece terminal olmayan durumdan terminale ilerler; success olan kayıt bir
daha değişmez. Yazma, version sütunu üzerinden compare-and-swap UPDATE ile yapılır,
böylece aynı txn_ref için eşzamanlı/tekrarlı bildirimler tek etki bırakır.
"""
import logging
from datetime import datetime
from typing import Mapping

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from voltsub.core.errors import Conflict, InvalidInput, NotFound
from voltsub.models import PAYMENT_METHODS, TRANSACTION_STATUSES, PaymentTransaction, User

log = logging.getLogger("voltsub.ledger")

FINAL_STATUS = "success"
OUTCOME_STATUSES = ("success", "failed", "cancelled", "processing")
MAX_CAS_RETRIES = 5


def merge_bag(current: Mapping | None, patch: Mapping | None) -> dict:
    """Anahtar bazında birleştirme; mevcut sözlük yerinde değiştirilmez."""
    merged = dict(current or {})
    for key, value in (patch or {}).items():
        merged[key] = value
    return merged


def create(
    db: Session,
    user_id: int,
    amount: int,
    method: str = "vnpay",
    description: str = "",
    details: Mapping | None = None,
    metadata: Mapping | None = None,
    gateway_reference: str | None = None,
    status: str = "pending",
) -> PaymentTransaction:
    if db.get(User, user_id) is None:
        raise NotFound("User not found", user_id=user_id)
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidInput("amount must be a positive integer")
    if method not in PAYMENT_METHODS:
        raise InvalidInput(f"payment method must be one of {', '.join(PAYMENT_METHODS)}")
    if status not in TRANSACTION_STATUSES:
        raise InvalidInput(f"unknown transaction status: {status}")

    txn = PaymentTransaction(
        user_id=user_id,
        amount=amount,
        payment_method=method,
        description=description or "",
        gateway_details=dict(details or {}),
        meta=dict(metadata or {}),
        gateway_reference=gateway_reference,
        status=status,
    )
    db.add(txn)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("A transaction with this reference already exists", gateway_reference=gateway_reference)
    db.refresh(txn)
    log.info("Ledger entry created: id=%s ref=%s amount=%s", txn.id, gateway_reference, amount)
    return txn


def get(db: Session, transaction_id: int) -> PaymentTransaction:
    txn = db.get(PaymentTransaction, transaction_id)
    if txn is None:
        raise NotFound("Transaction not found", transaction_id=transaction_id)
    return txn


def find_by_correlation_key(db: Session, key: str | None) -> PaymentTransaction | None:
    if not key:
        return None
    stmt = select(PaymentTransaction).where(PaymentTransaction.gateway_reference == key)
    return db.exec(stmt).first()


def list_for_user(
    db: Session,
    user_id: int,
    status: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[PaymentTransaction], int]:
    page = max(1, page)
    limit = min(max(1, limit), 100)
    stmt = select(PaymentTransaction).where(PaymentTransaction.user_id == user_id)
    count_stmt = select(func.count()).select_from(PaymentTransaction).where(PaymentTransaction.user_id == user_id)
    if status:
        stmt = stmt.where(PaymentTransaction.status == status)
        count_stmt = count_stmt.where(PaymentTransaction.status == status)
    stmt = stmt.order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc())
    rows = list(db.exec(stmt.offset((page - 1) * limit).limit(limit)).all())
    total = db.exec(count_stmt).one()
    return rows, total


def apply_outcome(
    db: Session,
    transaction_id: int,
    outcome_status: str,
    details: Mapping | None = None,
    metadata_patch: Mapping | None = None,
) -> PaymentTransaction:
    """
    Gateway sonucunu deftere uygular. Kayıt zaten success ise dokunmadan döner
    (tekrarlı IPN/dönüş). Yarışı kaybeden yazma tekrar okunup yeniden değerlendirilir.
    """
    if outcome_status not in OUTCOME_STATUSES:
        raise InvalidInput(f"unknown outcome status: {outcome_status}")

    for _ in range(MAX_CAS_RETRIES):
        txn = db.get(PaymentTransaction, transaction_id, populate_existing=True)
        if txn is None:
            raise NotFound("Transaction not found", transaction_id=transaction_id)
        if txn.status == FINAL_STATUS:
            log.info("Ledger entry %s already success; outcome %s ignored", txn.id, outcome_status)
            return txn

        stmt = (
            update(PaymentTransaction)
            .where(
                PaymentTransaction.id == transaction_id,
                PaymentTransaction.version == txn.version,
                PaymentTransaction.status != FINAL_STATUS,
            )
            .values(
                status=outcome_status,
                gateway_details=merge_bag(txn.gateway_details, details),
                meta=merge_bag(txn.meta, metadata_patch),
                version=txn.version + 1,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        db.commit()
        if result.rowcount == 1:
            txn = db.get(PaymentTransaction, transaction_id, populate_existing=True)
            log.info("Ledger entry %s -> %s (version %s)", txn.id, txn.status, txn.version)
            return txn
        log.info("Ledger entry %s changed concurrently; re-evaluating", transaction_id)

    raise Conflict("Transaction is being updated concurrently, try again", transaction_id=transaction_id)


def check_amount(txn: PaymentTransaction, notified_minor_units: str | int | None) -> bool:
    """IPN'deki vnp_Amount (x100) defterdeki tutarla aynı mı?"""
    try:
        received = int(str(notified_minor_units).strip())
    except (TypeError, ValueError):
        return False
    return received == txn.amount * 100


def mark_amount_mismatch(
    db: Session,
    transaction_id: int,
    expected: int,
    received: str | int | None,
    details: Mapping | None = None,
) -> PaymentTransaction:
    return apply_outcome(
        db,
        transaction_id,
        "failed",
        details=details,
        metadata_patch={
            "error": "Amount mismatch",
            "expected_amount": expected,
            "received_amount": received,
            "updated_from": "ipn",
            "updated_at": datetime.utcnow().isoformat(),
        },
    )
