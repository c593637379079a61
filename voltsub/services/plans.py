"""Abonelik paketleri: varsayılan 9 paket (3 tür x 3 süre) ve okuma yardımcıları."""
import logging

from sqlmodel import Session, select

from voltsub.core.errors import InvalidInput, NotFound
from voltsub.models import SubscriptionPlan

log = logging.getLogger("voltsub.plans")

DURATION_DAYS = {"1_month": 30, "6_months": 180, "12_months": 365}
DURATION_MONTHS = {"1_month": 1, "6_months": 6, "12_months": 12}
DURATION_LABELS = {"1_month": "1 Month", "6_months": "6 Months", "12_months": "12 Months"}

# VND
DEFAULT_PRICES = {
    "basic": {"1_month": 99000, "6_months": 549000, "12_months": 999000},
    "standard": {"1_month": 199000, "6_months": 1099000, "12_months": 1999000},
    "premium": {"1_month": 299000, "6_months": 1649000, "12_months": 2999000},
}

# -1 = sınırsız
DEFAULT_FEATURES = {
    "basic": {"maxReservations": 5, "maxVehicles": 1, "prioritySupport": False, "discount": 0},
    "standard": {"maxReservations": 20, "maxVehicles": 3, "prioritySupport": True, "discount": 5},
    "premium": {"maxReservations": -1, "maxVehicles": -1, "prioritySupport": True, "discount": 10},
}


def default_plans() -> list[SubscriptionPlan]:
    plans = []
    order = 0
    for plan_type, prices in DEFAULT_PRICES.items():
        monthly = prices["1_month"]
        for duration, price in prices.items():
            order += 1
            original = monthly * DURATION_MONTHS[duration]
            plans.append(SubscriptionPlan(
                name=f"{plan_type.capitalize()} - {DURATION_LABELS[duration]}",
                type=plan_type,
                duration=duration,
                duration_days=DURATION_DAYS[duration],
                price=price,
                original_price=original if original != price else None,
                features=dict(DEFAULT_FEATURES[plan_type]),
                display_order=order,
            ))
    return plans


def seed_default_plans(db: Session) -> int:
    """Plan tablosu boşsa varsayılan paketleri ekler; eklenen sayıyı döner."""
    if db.exec(select(SubscriptionPlan.id).limit(1)).first() is not None:
        return 0
    plans = default_plans()
    for plan in plans:
        db.add(plan)
    db.commit()
    log.info("Seeded %d default subscription plans", len(plans))
    return len(plans)


def get_plan(db: Session, plan_id: int, require_active: bool = True) -> SubscriptionPlan:
    plan = db.get(SubscriptionPlan, plan_id)
    if plan is None:
        raise NotFound("Subscription plan not found", plan_id=plan_id)
    if require_active and not plan.is_active:
        raise InvalidInput("Subscription plan is not active", plan_id=plan_id)
    return plan


def find_plan(db: Session, plan_type: str, duration: str) -> SubscriptionPlan | None:
    stmt = select(SubscriptionPlan).where(SubscriptionPlan.type == plan_type, SubscriptionPlan.duration == duration)
    return db.exec(stmt).first()


def list_active_plans(db: Session) -> list[SubscriptionPlan]:
    stmt = (
        select(SubscriptionPlan)
        .where(SubscriptionPlan.is_active == True)  # noqa: E712
        .order_by(SubscriptionPlan.display_order, SubscriptionPlan.id)
    )
    return list(db.exec(stmt).all())
