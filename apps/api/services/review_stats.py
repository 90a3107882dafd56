"""
Coach review statistics.

Derived from published reviews and the submissions they completed.
Cached per coach in Redis; publishing or rating a review drops the entry.
"""

import logging
from datetime import timedelta
from typing import Any, Dict

from sqlalchemy.orm import Session

from core.cache import cache_key, delete_cache, get_cache, set_cache
from core.config import settings
from models import REVIEW_PUBLISHED, Review, Submission, as_utc, utcnow

logger = logging.getLogger(__name__)

STATS_CACHE_PREFIX = "coach_stats"


def invalidate_coach_stats(coach_uid: str) -> None:
    delete_cache(cache_key(STATS_CACHE_PREFIX, coach_uid))


def _compute_stats(db: Session, coach_uid: str) -> Dict[str, Any]:
    rows = (
        db.query(Review, Submission)
        .join(Submission, Submission.id == Review.submission_id)
        .filter(Review.coach_uid == coach_uid, Review.status == REVIEW_PUBLISHED)
        .all()
    )

    now = utcnow()
    week_ago = now - timedelta(days=7)
    month_ago = now - timedelta(days=30)

    ratings = [r.athlete_satisfaction for r, _ in rows if r.athlete_satisfaction is not None]
    turnaround_hours = []
    this_week = 0
    this_month = 0
    for review, submission in rows:
        published = as_utc(review.published_at)
        claimed = as_utc(submission.claimed_at)
        if published and claimed:
            turnaround_hours.append((published - claimed).total_seconds() / 3600)
        if published and published >= week_ago:
            this_week += 1
        if published and published >= month_ago:
            this_month += 1

    return {
        "total_reviews": len(rows),
        "average_satisfaction": round(sum(ratings) / len(ratings), 2) if ratings else 0.0,
        "average_turnaround_hours": (
            round(sum(turnaround_hours) / len(turnaround_hours), 2) if turnaround_hours else 0.0
        ),
        "reviews_this_week": this_week,
        "reviews_this_month": this_month,
    }


def coach_review_stats(db: Session, coach_uid: str) -> Dict[str, Any]:
    key = cache_key(STATS_CACHE_PREFIX, coach_uid)
    cached = get_cache(key)
    if cached is not None:
        return cached

    stats = _compute_stats(db, coach_uid)
    set_cache(key, stats, ttl=settings.CACHE_TTL_STATS)
    logger.debug(f"Computed review stats for coach {coach_uid}")
    return stats
