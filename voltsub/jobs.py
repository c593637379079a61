"""
Zamanlanmış işler.

Kullanım:
    python -m voltsub.jobs sweep [--now 2026-01-31T00:00:00] [--verbose]

Cron:
    */10 * * * * cd /path/to/project && python -m voltsub.jobs sweep >> /var/log/voltsub-sweep.log 2>&1
"""
import argparse
import logging
import sys
from datetime import datetime

from sqlmodel import Session

from voltsub.core.database import engine, init_db
from voltsub.logging import setup_logging
from voltsub.services.subscriptions import sweep_expirations

log = logging.getLogger("voltsub.jobs")


def run_sweep(now: datetime | None = None) -> dict[str, int]:
    init_db()
    with Session(engine) as db:
        return sweep_expirations(db, now=now)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="voltsub.jobs", description="Voltsub scheduled jobs")
    sub = parser.add_subparsers(dest="command", required=True)
    sweep = sub.add_parser("sweep", help="Close subscriptions whose end date has passed")
    sweep.add_argument("--now", type=datetime.fromisoformat, default=None, help="Reference time (UTC, ISO 8601)")
    sweep.add_argument("--verbose", action="store_true", help="Enable verbose output")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)
    if args.command == "sweep":
        try:
            counts = run_sweep(now=args.now)
        except Exception as e:
            log.exception("Expiration sweep failed")
            print(f"Error running expiration sweep: {e}", file=sys.stderr)
            return 1
        print(f"Expired: {counts['expired']} | Cancelled: {counts['cancelled']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
