"""
Logging yapılandırması (API ve `voltsub.jobs`).
Servisler "voltsub.<modül>" logger kullanır: voltsub.ledger, voltsub.subscriptions, voltsub.reconciliation ...
"""
import logging
import sys

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: int | str = logging.INFO, format_string: str = DEFAULT_FORMAT) -> None:
    logging.basicConfig(level=level, format=format_string, stream=sys.stdout, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "voltsub"):
        logging.getLogger(name).setLevel(level)
    # SQL echo ve limiter iç logları sadece uyarıda
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("slowapi").setLevel(logging.WARNING)
