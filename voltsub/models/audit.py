from datetime import datetime

from sqlmodel import Field, SQLModel


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"
    id: int | None = Field(default=None, primary_key=True)
    event: str = Field(index=True)  # payment_success, amount_mismatch, activation_failed, ...
    user_id: int | None = Field(default=None, index=True)
    ip: str | None = None
    reference: str | None = Field(default=None, index=True)  # gateway_reference / subscription id
    detail: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
