from .payment import CamelModel, CheckoutUrlRequest, CheckoutUrlResponse, IpnAckOut, TransactionOut
from .subscription import (
    AdminCreateSubscriptionRequest,
    CancelRequest,
    PlanOut,
    SubscriptionOut,
    SubscriptionPaymentRequest,
    UpgradeRequest,
)


def dump(schema: type[CamelModel], obj) -> dict | None:
    """ORM nesnesini camelCase JSON sözlüğüne çevirir."""
    if obj is None:
        return None
    return schema.model_validate(obj).model_dump(by_alias=True, mode="json")


__all__ = [
    "AdminCreateSubscriptionRequest",
    "CamelModel",
    "CancelRequest",
    "CheckoutUrlRequest",
    "CheckoutUrlResponse",
    "IpnAckOut",
    "PlanOut",
    "SubscriptionOut",
    "SubscriptionPaymentRequest",
    "TransactionOut",
    "UpgradeRequest",
    "dump",
]
