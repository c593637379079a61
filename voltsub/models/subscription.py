from datetime import datetime

from sqlalchemy import JSON, Column, Index, text
from sqlmodel import Field, SQLModel

SUBSCRIPTION_STATUSES = ("pending", "current_active", "active", "expired", "cancelled")


class Subscription(SQLModel, table=True):
    """
    Kullanıcı aboneliği. Ödeme onaylanınca current_active olur; kullanıcı başına
    en fazla bir current_active kayıt (kısmi unique index ile de korunur).
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        Index(
            "uq_subscriptions_one_current_active",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'current_active'"),
            postgresql_where=text("status = 'current_active'"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    plan_id: int = Field(foreign_key="subscription_plans.id")
    upgraded_from: int | None = Field(default=None, foreign_key="subscriptions.id")
    transaction_id: int | None = Field(default=None, index=True)
    type: str  # basic | standard | premium
    duration: str  # 1_month | 6_months | 12_months
    status: str = Field(default="pending", index=True)
    start_date: datetime
    end_date: datetime = Field(index=True)
    price: int
    currency: str = "VND"
    auto_renew: bool = False
    cancelled_at: datetime | None = None
    features: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    # planId, planName, originalPrice, durationDays, willExpireAt, cancelledReason
    meta: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    version: int = 1
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
