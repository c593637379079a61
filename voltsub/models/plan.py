"""Abonelik paketleri: tür (basic/standard/premium) x süre (1/6/12 ay)."""
from datetime import datetime

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

PLAN_TYPES = ("basic", "standard", "premium")
PLAN_DURATIONS = ("1_month", "6_months", "12_months")


class SubscriptionPlan(SQLModel, table=True):
    __tablename__ = "subscription_plans"
    __table_args__ = (UniqueConstraint("type", "duration", name="uq_subscription_plans_type_duration"),)

    id: int | None = Field(default=None, primary_key=True)
    name: str
    type: str = Field(index=True)  # basic | standard | premium
    duration: str  # 1_month | 6_months | 12_months
    duration_days: int
    price: int  # VND, tam sayı
    original_price: int | None = None
    currency: str = "VND"
    description: str | None = None
    # maxReservations, maxVehicles, prioritySupport, discount
    features: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    is_active: bool = True
    display_order: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
