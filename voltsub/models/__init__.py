from .audit import AuditLog
from .error_log import ErrorLog
from .plan import PLAN_DURATIONS, PLAN_TYPES, SubscriptionPlan
from .security_log import SecurityLog
from .subscription import SUBSCRIPTION_STATUSES, Subscription
from .transaction import PAYMENT_METHODS, TRANSACTION_STATUSES, PaymentTransaction
from .user import User

__all__ = [
    "AuditLog",
    "ErrorLog",
    "PaymentTransaction",
    "SecurityLog",
    "Subscription",
    "SubscriptionPlan",
    "User",
    "PAYMENT_METHODS",
    "PLAN_DURATIONS",
    "PLAN_TYPES",
    "SUBSCRIPTION_STATUSES",
    "TRANSACTION_STATUSES",
]
