from datetime import datetime

from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    __tablename__ = "users"
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    full_name: str = ""
    phone: str | None = None
    created_at: datetime | None = Field(default_factory=datetime.utcnow)
    is_banned: bool = False
