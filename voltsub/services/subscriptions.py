"""
Abonelik yaşam döngüsü.

pending -> current_active (ödeme onayı) -> active (yenisi gelince) -> expired | cancelled (süre bitince).
Kullanıcı başına tek current_active kural: demote + promote aynı DB işleminde.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from voltsub.core.errors import Conflict, InvalidInput, NotFound
from voltsub.models import Subscription, SubscriptionPlan, User
from voltsub.services.ledger import merge_bag
from voltsub.services.plans import get_plan

log = logging.getLogger("voltsub.subscriptions")

TIER_RANK = {"basic": 1, "standard": 2, "premium": 3}
DURATION_RANK = {"1_month": 1, "6_months": 2, "12_months": 3}
CANCELLABLE_STATUSES = ("active", "current_active")
LIVE_STATUSES = ("active", "current_active")
MAX_ACTIVATION_RETRIES = 3


def _plan_meta(plan: SubscriptionPlan) -> dict:
    return {
        "planId": plan.id,
        "planName": plan.name,
        "originalPrice": plan.original_price if plan.original_price is not None else plan.price,
        "durationDays": plan.duration_days,
    }


def create(
    db: Session,
    user_id: int,
    plan_id: int,
    auto_renew: bool = False,
    price_override: int | None = None,
    transaction_id: int | None = None,
    upgraded_from: int | None = None,
) -> Subscription:
    if db.get(User, user_id) is None:
        raise NotFound("User not found", user_id=user_id)
    plan = get_plan(db, plan_id)
    if price_override is not None and (isinstance(price_override, bool) or price_override <= 0):
        raise InvalidInput("custom price must be a positive integer")

    start = datetime.utcnow()
    sub = Subscription(
        user_id=user_id,
        plan_id=plan.id,
        upgraded_from=upgraded_from,
        transaction_id=transaction_id,
        type=plan.type,
        duration=plan.duration,
        status="pending",
        start_date=start,
        end_date=start + timedelta(days=plan.duration_days),
        price=int(price_override) if price_override is not None else plan.price,
        currency=plan.currency,
        auto_renew=auto_renew,
        features=dict(plan.features or {}),
        meta=_plan_meta(plan),
    )
    db.add(sub)
    db.commit()
    db.refresh(sub)
    log.info("Subscription created: id=%s user=%s plan=%s", sub.id, user_id, plan.id)
    return sub


def get(db: Session, subscription_id: int) -> Subscription:
    sub = db.get(Subscription, subscription_id)
    if sub is None:
        raise NotFound("Subscription not found", subscription_id=subscription_id)
    return sub


def list_for_user(db: Session, user_id: int, status: str | None = None) -> list[Subscription]:
    stmt = select(Subscription).where(Subscription.user_id == user_id)
    if status:
        stmt = stmt.where(Subscription.status == status)
    stmt = stmt.order_by(Subscription.created_at.desc(), Subscription.id.desc())
    return list(db.exec(stmt).all())


def current_active(db: Session, user_id: int, now: datetime | None = None) -> Subscription | None:
    """Şu an geçerli current_active abonelik (start <= now <= end)."""
    now = now or datetime.utcnow()
    stmt = (
        select(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.status == "current_active",
            Subscription.start_date <= now,
            Subscription.end_date >= now,
        )
        .order_by(Subscription.end_date.desc())
    )
    return db.exec(stmt).first()


def activate(db: Session, subscription_id: int) -> Subscription:
    """
    Aboneliği current_active yapar; kullanıcının diğer current_active kaydı active'e düşer.
    Eşzamanlı aktivasyonda unique index ihlali olursa işlem geri alınıp tekrar denenir.
    """
    for attempt in range(1, MAX_ACTIVATION_RETRIES + 1):
        sub = db.get(Subscription, subscription_id, populate_existing=True)
        if sub is None:
            raise NotFound("Subscription not found", subscription_id=subscription_id)
        if sub.status == "current_active":
            return sub
        if sub.status in ("expired", "cancelled"):
            raise Conflict(f"Cannot activate a subscription in status {sub.status}", subscription_id=subscription_id)

        now = datetime.utcnow()
        try:
            demoted = db.execute(
                update(Subscription)
                .where(
                    Subscription.user_id == sub.user_id,
                    Subscription.status == "current_active",
                    Subscription.id != sub.id,
                )
                .values(status="active", version=Subscription.version + 1, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            # Demote önce DB'ye gider; promote sırasında index iki satır görmez
            promoted = db.execute(
                update(Subscription)
                .where(Subscription.id == sub.id, Subscription.version == sub.version)
                .values(status="current_active", version=sub.version + 1, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if promoted.rowcount != 1:
                db.rollback()
                log.info("Subscription %s changed concurrently (attempt %s)", subscription_id, attempt)
                continue
            db.commit()
        except IntegrityError:
            db.rollback()
            log.warning("Concurrent activation for user %s (attempt %s)", sub.user_id, attempt)
            continue

        log.info(
            "Subscription %s activated for user %s (demoted %s)",
            subscription_id,
            sub.user_id,
            demoted.rowcount,
        )
        return db.get(Subscription, subscription_id, populate_existing=True)

    raise Conflict("Subscription activation conflicted repeatedly, try again", subscription_id=subscription_id)


def is_upgrade(old_type: str, old_duration: str, new_type: str, new_duration: str) -> bool:
    """Daha yüksek tür veya daha uzun süre = upgrade."""
    return (
        TIER_RANK.get(new_type, 0) > TIER_RANK.get(old_type, 0)
        or DURATION_RANK.get(new_duration, 0) > DURATION_RANK.get(old_duration, 0)
    )


def upgrade(db: Session, user_id: int, new_plan_id: int) -> Subscription:
    """Yeni pending abonelik açar (upgraded_from dolu). Aktivasyon ödeme onayıyla olur."""
    current = current_active(db, user_id)
    if current is None:
        raise InvalidInput("No active subscription to upgrade")
    plan = get_plan(db, new_plan_id)
    if not is_upgrade(current.type, current.duration, plan.type, plan.duration):
        raise InvalidInput(
            f"Plan {plan.type}/{plan.duration} is not an upgrade over {current.type}/{current.duration}"
        )
    return create(db, user_id, plan.id, auto_renew=current.auto_renew, upgraded_from=current.id)


def cancel(db: Session, subscription_id: int, reason: str = "User cancelled") -> Subscription:
    """İptal: durum değişmez, end_date'e kadar kullanılabilir; sweep sonra cancelled yapar."""
    sub = get(db, subscription_id)
    if sub.status not in CANCELLABLE_STATUSES:
        raise Conflict(
            f"Only active or current_active subscriptions can be cancelled. Current status: {sub.status}",
            subscription_id=subscription_id,
        )
    now = datetime.utcnow()
    sub.cancelled_at = now
    sub.auto_renew = False
    sub.meta = merge_bag(sub.meta, {
        "willExpireAt": sub.end_date.isoformat(),
        "cancelledReason": reason,
    })
    sub.version += 1
    sub.updated_at = now
    db.add(sub)
    db.commit()
    db.refresh(sub)
    log.info("Subscription %s cancelled; usable until %s", sub.id, sub.end_date)
    return sub


def sweep_expirations(db: Session, now: datetime | None = None) -> dict[str, int]:
    """Süresi dolanları kapatır: iptal edilmemiş -> expired, iptal edilmiş -> cancelled."""
    now = now or datetime.utcnow()
    base = (
        Subscription.status.in_(LIVE_STATUSES),
        Subscription.end_date < now,
    )
    expired = db.execute(
        update(Subscription)
        .where(*base, Subscription.cancelled_at.is_(None))
        .values(status="expired", version=Subscription.version + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    cancelled = db.execute(
        update(Subscription)
        .where(*base, Subscription.cancelled_at.is_not(None))
        .values(status="cancelled", version=Subscription.version + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    counts = {"expired": expired.rowcount, "cancelled": cancelled.rowcount}
    if counts["expired"] or counts["cancelled"]:
        log.info("Expiration sweep: %s", counts)
    return counts
