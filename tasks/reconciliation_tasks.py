import logging

from celery import current_app
from sqlalchemy.exc import OperationalError

from core.db import db_session
from services.reconciliation import repair_open_records

logger = logging.getLogger(__name__)


@current_app.task(bind=True, max_retries=3)
def reconcile_checkouts_task(self):
    """
    Periodic repair of degraded checkouts (see services.reconciliation).
    Retries with exponential backoff when the database is unreachable.
    """
    try:
        with db_session() as db:
            return repair_open_records(db)
    except OperationalError as exc:
        countdown = min(2 ** self.request.retries, 60)  # Max 60 seconds
        logger.warning("Reconciliation deferred, database unavailable: %s", exc)
        raise self.retry(exc=exc, countdown=countdown)
