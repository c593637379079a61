from datetime import datetime
from typing import Literal

from pydantic import Field

from .payment import CamelModel


class PlanOut(CamelModel):
    id: int
    name: str
    type: str
    duration: str
    duration_days: int
    price: int
    original_price: int | None = None
    currency: str
    description: str | None = None
    features: dict = Field(default_factory=dict)
    is_active: bool
    display_order: int


class SubscriptionOut(CamelModel):
    id: int
    user_id: int
    plan_id: int
    upgraded_from: int | None = None
    transaction_id: int | None = None
    type: str
    duration: str
    status: str
    start_date: datetime
    end_date: datetime
    price: int
    currency: str
    auto_renew: bool
    cancelled_at: datetime | None = None
    features: dict = Field(default_factory=dict)
    meta: dict = Field(default_factory=dict, serialization_alias="metadata")
    created_at: datetime
    updated_at: datetime


class SubscriptionPaymentRequest(CamelModel):
    plan_id: int
    locale: Literal["vn", "en"] = "vn"


class UpgradeRequest(CamelModel):
    plan_id: int
    locale: Literal["vn", "en"] = "vn"


class CancelRequest(CamelModel):
    reason: str | None = None


class AdminCreateSubscriptionRequest(CamelModel):
    """Destek: ödeme olmadan abonelik (nakit vb.)."""
    user_id: int
    plan_id: int
    custom_price: int | None = Field(default=None, gt=0)
    auto_renew: bool = False
    activate: bool = False
