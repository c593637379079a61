from sqlalchemy import event
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from .config import settings


def _normalized_database_url(raw_url: str) -> str:
    """
    DATABASE_URL normalizasyonu:
    - postgres:// veya postgresql:// ise psycopg3 dialekti ile çalışacak şekilde dönüştür.
    - Diğer tüm durumlarda olduğu gibi bırak (SQLite vs.).
    """
    if not raw_url:
        return "sqlite:///./voltsub.db"
    raw_url = raw_url.strip()
    if raw_url.startswith("postgres://"):
        return "postgresql+psycopg://" + raw_url[len("postgres://") :]
    if raw_url.startswith("postgresql://") and "+psycopg" not in raw_url.split("://", 1)[0]:
        return "postgresql+psycopg://" + raw_url[len("postgresql://") :]
    return raw_url


DATABASE_URL = _normalized_database_url(settings.database_url)
IS_SQLITE = DATABASE_URL.startswith("sqlite")
_TIMEOUT = max(1, int(settings.db_timeout_seconds or 10))


def _engine_kwargs() -> dict:
    if IS_SQLITE:
        kwargs: dict = {"connect_args": {"check_same_thread": False, "timeout": _TIMEOUT}}
        # In-memory SQLite: tek bağlantı kullan ki init_db tabloları tüm isteklerde görünsün (testler için)
        if ":memory:" in DATABASE_URL:
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {
        "connect_args": {"options": f"-c statement_timeout={_TIMEOUT * 1000}"},
        "pool_timeout": _TIMEOUT,
        "pool_pre_ping": True,
    }


engine = create_engine(DATABASE_URL, **_engine_kwargs())

if IS_SQLITE:
    @event.listens_for(engine, "connect")
    def _sqlite_busy_timeout(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {_TIMEOUT * 1000}")
        cursor.close()


def get_db():
    with Session(engine) as session:
        yield session


def init_db():
    from voltsub import models  # noqa: F401  tabloların metadata'ya kaydı için
    from voltsub.services.plans import seed_default_plans

    SQLModel.metadata.create_all(engine)
    if settings.seed_default_plans:
        with Session(engine) as db:
            seed_default_plans(db)


def reset_db():
    """Testler için: tüm tabloları silip yeniden oluşturur."""
    SQLModel.metadata.drop_all(engine)
    init_db()
