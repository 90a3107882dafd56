"""
Scheduled Maintenance Tasks

SLA breach flagging and notification retention.
Runs via Celery Beat scheduler (see celerybeat_schedule.py).
"""

from typing import Dict
from celery import Task
from sqlalchemy.orm import Session
from core.config import settings
from core.database import get_db_sync
from tasks import celery_app
from services.notifications import purge_read_notifications
from services.submission_store import flag_sla_breaches
import logging

logger = logging.getLogger(__name__)


@celery_app.task(name="tasks.flag_sla_breaches", bind=True)
def flag_sla_breaches_task(self: Task) -> Dict:
    """Flag overdue open submissions and notify their athletes."""
    db: Session = get_db_sync()
    try:
        flagged = flag_sla_breaches(db)
        db.commit()
        if flagged:
            logger.info(f"Flagged {flagged} submissions past their SLA")
        return {"status": "ok", "flagged": flagged}
    except Exception as e:
        db.rollback()
        logger.error(f"SLA breach sweep failed: {e}", exc_info=True)
        raise
    finally:
        db.close()


@celery_app.task(name="tasks.purge_read_notifications", bind=True)
def purge_read_notifications_task(self: Task, days_old: int = None) -> Dict:
    """Delete read notifications older than the retention window."""
    days = days_old if days_old is not None else settings.NOTIFICATION_RETENTION_DAYS
    db: Session = get_db_sync()
    try:
        deleted = purge_read_notifications(db, days)
        db.commit()
        logger.info(f"Purged {deleted} read notifications older than {days} days")
        return {"status": "ok", "deleted": deleted}
    except Exception as e:
        db.rollback()
        logger.error(f"Notification purge failed: {e}", exc_info=True)
        raise
    finally:
        db.close()
