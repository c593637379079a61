"""Audit/güvenlik kayıtları. Ayrı oturumla yazılır; hata ana işlemi bozmaz, sadece loglanır."""
import logging

from sqlmodel import Session

from voltsub.core.database import engine
from voltsub.models import AuditLog, SecurityLog

log = logging.getLogger("voltsub.audit")


def record_audit(
    event: str,
    user_id: int | None = None,
    reference: str | None = None,
    detail: str | None = None,
    ip: str | None = None,
) -> None:
    try:
        with Session(engine) as db:
            db.add(AuditLog(
                event=event,
                user_id=user_id,
                reference=(reference or None) and str(reference)[:128],
                detail=(detail or None) and detail[:2000],
                ip=ip or None,
            ))
            db.commit()
    except Exception as e:
        log.warning("AuditLog %s write failed: %s", event, e)


def record_security_event(
    event: str,
    ip: str | None = None,
    endpoint: str | None = None,
    detail: str | None = None,
    user_id: int | None = None,
) -> None:
    try:
        with Session(engine) as db:
            db.add(SecurityLog(
                event=event,
                user_id=user_id,
                ip=ip or None,
                endpoint=endpoint,
                detail=(detail or None) and detail[:2000],
            ))
            db.commit()
    except Exception as e:
        log.warning("SecurityLog %s write failed: %s", event, e)
