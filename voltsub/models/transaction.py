from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, Column
from sqlmodel import Field, SQLModel

TRANSACTION_STATUSES = ("pending", "processing", "success", "failed", "cancelled", "refunded")
PAYMENT_METHODS = ("vnpay", "cash", "other")


class PaymentTransaction(SQLModel, table=True):
    """Ödeme defteri kaydı: gateway_reference (vnp_TxnRef) ile bildirimler eşleştirilir. Tutar VND."""

    __tablename__ = "payment_transactions"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_payment_transactions_amount_positive"),)

    id: int | None = Field(default=None, primary_key=True)
    gateway_reference: str | None = Field(default=None, unique=True, index=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    amount: int  # VND; gateway'e amount * 100 gider
    currency: str = "VND"
    status: str = Field(default="pending", index=True)  # pending | processing | success | failed | cancelled | refunded
    payment_method: str = "vnpay"  # vnpay | cash | other
    description: str = ""
    # Son görülen gateway alanları: responseCode, transactionStatus, transactionNo, bankCode, ...
    gateway_details: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    meta: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    # İyimser kilit: her durum değişiminde artar
    version: int = 1
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
