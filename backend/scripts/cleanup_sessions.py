"""
One-shot maintenance for the session store.
Run from backend/: python scripts/cleanup_sessions.py

Deletes expired refresh tokens, login history older than
LOGIN_HISTORY_RETENTION_DAYS and dismissed alerts older than
DISMISSED_ALERT_RETENTION_DAYS. Nothing here runs on a schedule.
"""

import argparse
import logging
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sessionguard.config import settings
from sessionguard.core.database import SessionLocal
from sessionguard.services.revocation_service import revocation_service
from sessionguard.services.security_event_service import security_event_service

logger = logging.getLogger("cleanup_sessions")


def run_cleanup(db, history_days=None, alert_days=None) -> dict:
    return {
        "expired_tokens": revocation_service.cleanup_expired_tokens(db),
        "login_events": security_event_service.cleanup_old_history(db, history_days),
        "dismissed_alerts": security_event_service.cleanup_old_alerts(db, alert_days),
    }


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--history-days", type=int, default=settings.LOGIN_HISTORY_RETENTION_DAYS)
    parser.add_argument("--alert-days", type=int, default=settings.DISMISSED_ALERT_RETENTION_DAYS)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    db = SessionLocal()
    try:
        counts = run_cleanup(db, args.history_days, args.alert_days)
    finally:
        db.close()

    for name, count in counts.items():
        logger.info("Removed %d %s", count, name.replace("_", " "))
    return 0


if __name__ == "__main__":
    sys.exit(main())
