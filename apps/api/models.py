from sqlalchemy import Column, Integer, Boolean, CheckConstraint, DateTime, ForeignKey, Text, Index, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from core.database import Base
import uuid
from typing import Any, Dict, Optional
from datetime import datetime, timezone

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Submission workflow states
STATUS_PENDING = "pending"
STATUS_CLAIMED = "claimed"
STATUS_COMPLETED = "completed"
STATUS_DECLINED = "declined"
SUBMISSION_STATUSES = (STATUS_PENDING, STATUS_CLAIMED, STATUS_COMPLETED, STATUS_DECLINED)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_DECLINED)

REVIEW_DRAFT = "draft"
REVIEW_PUBLISHED = "published"

# Notification types
NOTIFY_REVIEW_PUBLISHED = "review_published"
NOTIFY_SUBMISSION_CLAIMED = "submission_claimed"
NOTIFY_SUBMISSION_DECLINED = "submission_declined"
NOTIFY_COMMENT_ADDED = "comment_added"
NOTIFY_SLA_BREACH = "sla_breach"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


class Submission(Base):
    """
    An athlete's uploaded clip awaiting coach review.

    Athlete-owned: media_ref and the context fields.
    Claim-owned (the claiming coach): status, coach_uid and the claim/review bookkeeping.
    """

    __tablename__ = "submissions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    athlete_uid = Column(Text, nullable=False)
    coach_uid = Column(Text, nullable=True)

    media_ref = Column(Text, nullable=False)
    skill_tag = Column(Text, nullable=False)
    athlete_context = Column(Text, nullable=True)
    athlete_goals = Column(Text, nullable=True)
    specific_questions = Column(Text, nullable=True)

    # pending | claimed | completed | declined
    status = Column(Text, nullable=False, default=STATUS_PENDING)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    review_id = Column(Uuid, nullable=True)
    decline_reason = Column(Text, nullable=True)
    declined_by = Column(Text, nullable=True)

    sla_deadline = Column(DateTime(timezone=True), nullable=False)
    sla_breach = Column(Boolean, nullable=False, default=False)
    comment_count = Column(Integer, nullable=False, default=0)

    # Bumped on every write so clients can discard stale copies.
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'claimed', 'completed', 'declined')",
            name="ck_submissions_status",
        ),
        CheckConstraint(
            "(status != 'pending' OR coach_uid IS NULL) AND (status != 'claimed' OR coach_uid IS NOT NULL)",
            name="ck_submissions_claim_owner",
        ),
        Index("ix_submissions_status_created_at", "status", "created_at"),
        Index("ix_submissions_athlete_uid_created_at", "athlete_uid", "created_at"),
        Index("ix_submissions_coach_uid_created_at", "coach_uid", "created_at"),
    )

    def to_document(self) -> Dict[str, Any]:
        """JSON-safe snapshot used for change events and API payloads."""
        return {
            "id": str(self.id),
            "athlete_uid": self.athlete_uid,
            "coach_uid": self.coach_uid,
            "media_ref": self.media_ref,
            "skill_tag": self.skill_tag,
            "athlete_context": self.athlete_context,
            "athlete_goals": self.athlete_goals,
            "specific_questions": self.specific_questions,
            "status": self.status,
            "claimed_at": _iso(self.claimed_at),
            "reviewed_at": _iso(self.reviewed_at),
            "review_id": str(self.review_id) if self.review_id else None,
            "decline_reason": self.decline_reason,
            "declined_by": self.declined_by,
            "sla_deadline": _iso(self.sla_deadline),
            "sla_breach": bool(self.sla_breach),
            "comment_count": self.comment_count or 0,
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Review(Base):
    """
    A coach's critique of exactly one submission.

    Mutable by its author only while draft; published reviews are
    read-only apart from the athlete's satisfaction feedback.
    """

    __tablename__ = "reviews"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    submission_id = Column(Uuid, ForeignKey("submissions.id"), nullable=False, unique=True)
    coach_uid = Column(Text, nullable=False)

    # [{"criterion_id": str, "score": float, "comment": str | None}, ...]
    rubric_scores = Column(JSONType, nullable=False, default=list)
    # [{"timestamp_s": float, "comment": str, "kind": "praise" | "correction" | "question"}, ...]
    annotations = Column(JSONType, nullable=False, default=list)
    drill_recommendations = Column(JSONType, nullable=False, default=list)
    overall_feedback = Column(Text, nullable=True)
    next_steps = Column(Text, nullable=True)

    # draft | published
    status = Column(Text, nullable=False, default=REVIEW_DRAFT)

    athlete_satisfaction = Column(Integer, nullable=True)  # 1-5
    athlete_feedback = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    published_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('draft', 'published')", name="ck_reviews_status"),
        Index("ix_reviews_coach_uid_status", "coach_uid", "status"),
    )

    @property
    def is_empty(self) -> bool:
        return not (self.rubric_scores or self.annotations)

    @property
    def average_score(self) -> float:
        scores = [float(s.get("score", 0)) for s in (self.rubric_scores or [])]
        if not scores:
            return 0.0
        return sum(scores) / len(scores)

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "submission_id": str(self.submission_id),
            "coach_uid": self.coach_uid,
            "status": self.status,
            "published_at": _iso(self.published_at),
            "updated_at": _iso(self.updated_at),
        }


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    review_id = Column(Uuid, ForeignKey("reviews.id"), nullable=False)
    submission_id = Column(Uuid, ForeignKey("submissions.id"), nullable=False)
    parent_comment_id = Column(Uuid, ForeignKey("comments.id"), nullable=True)

    author_uid = Column(Text, nullable=False)
    author_role = Column(Text, nullable=False)
    body = Column(Text, nullable=False)
    media_timestamp_s = Column(Integer, nullable=True)  # optional pointer into the clip

    edited = Column(Boolean, nullable=False, default=False)
    edited_at = Column(DateTime(timezone=True), nullable=True)
    deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_comments_review_id_created_at", "review_id", "created_at"),
        Index("ix_comments_parent_comment_id", "parent_comment_id"),
    )

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "review_id": str(self.review_id),
            "submission_id": str(self.submission_id),
            "parent_comment_id": str(self.parent_comment_id) if self.parent_comment_id else None,
            "author_uid": self.author_uid,
            "deleted": bool(self.deleted),
            "created_at": _iso(self.created_at),
        }


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient_uid = Column(Text, nullable=False)
    type = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)

    submission_id = Column(Uuid, nullable=True)
    review_id = Column(Uuid, nullable=True)
    comment_id = Column(Uuid, nullable=True)

    read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    # Bumped in SQL on every change so live feeds can drop stale deliveries.
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_notifications_recipient_read_created", "recipient_uid", "read", "created_at"),
    )

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "recipient_uid": self.recipient_uid,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "submission_id": str(self.submission_id) if self.submission_id else None,
            "review_id": str(self.review_id) if self.review_id else None,
            "comment_id": str(self.comment_id) if self.comment_id else None,
            "read": bool(self.read),
            "read_at": _iso(self.read_at),
            "created_at": _iso(self.created_at),
            "version": self.version,
        }


class NotificationPreference(Base):
    """
    Which notification types a user wants. No row means everything is on.

    `types` maps notification type to enabled; types missing from it are on.
    """

    __tablename__ = "notification_preferences"

    recipient_uid = Column(Text, primary_key=True)
    email_enabled = Column(Boolean, nullable=False, default=True)
    push_enabled = Column(Boolean, nullable=False, default=True)
    types = Column(JSONType, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
