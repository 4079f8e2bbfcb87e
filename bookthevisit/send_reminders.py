"""Send due appointment reminder emails once.

Usage:
    python -m bookthevisit.send_reminders
"""
import logging
import sys

from bookthevisit.core.errors import StoreUnavailable
from bookthevisit.database import SessionLocal
from bookthevisit.models import appointment, availability, email_template, patient, provider, service, time_off  # noqa: F401
from bookthevisit.services.notifications import TemplatedEmailSender
from bookthevisit.services.reminders import send_due_reminders

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    db = SessionLocal()
    try:
        sent = send_due_reminders(db, TemplatedEmailSender(db))
    except StoreUnavailable as exc:
        logger.error('Reminder sweep failed: %s', exc.message)
        sys.exit(1)
    finally:
        db.close()
    logger.info('Sent %d reminder(s).', sent)


if __name__ == "__main__":
    main()
