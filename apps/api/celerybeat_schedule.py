"""
Celery Beat Schedule Configuration

Defines periodic tasks that run on a schedule.
"""

from celery.schedules import crontab

# Schedule configuration
beat_schedule = {
    # Flag pending/claimed submissions that have outlived their SLA.
    'flag-sla-breaches': {
        'task': 'tasks.flag_sla_breaches',
        'schedule': crontab(minute='*/15'),  # Every 15 minutes
    },
    # Drop read notifications past the retention window - daily at 3 AM UTC
    'purge-read-notifications': {
        'task': 'tasks.purge_read_notifications',
        'schedule': crontab(hour=3, minute=0),
    },
}
