from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """İstek/cevaplar camelCase; Python tarafında snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class CheckoutUrlRequest(CamelModel):
    amount: float
    order_info: str
    order_id: str | None = None
    bank_code: str | None = None
    locale: Literal["vn", "en"] = "vn"
    order_type: str = "other"


class CheckoutUrlResponse(CamelModel):
    payment_url: str
    correlation_key: str
    signed_fields: dict[str, str]
    transaction_id: int | None = None


class TransactionOut(CamelModel):
    id: int
    gateway_reference: str | None = None
    user_id: int
    amount: int
    currency: str
    status: str
    payment_method: str
    description: str = ""
    gateway_details: dict = Field(default_factory=dict)
    meta: dict = Field(default_factory=dict, serialization_alias="metadata")
    version: int
    created_at: datetime
    updated_at: datetime


class IpnAckOut(BaseModel):
    RspCode: str
    Message: str
