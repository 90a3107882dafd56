from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from uuid import UUID
from typing import Dict, Generic, List, Literal, Optional, TypeVar

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope; errors use the same shape with success=false (see main.py)."""
    success: bool = True
    data: T


def ok(data) -> dict:
    return {"success": True, "data": data}


# =============================================================================
# Review content
# =============================================================================

class RubricScore(BaseModel):
    criterion_id: str = Field(..., min_length=1, max_length=100)
    score: float = Field(..., ge=0, le=10)
    comment: Optional[str] = Field(default=None, max_length=2000)


class Annotation(BaseModel):
    """Timecoded note pinned to a moment in the clip."""
    timestamp_s: float = Field(..., ge=0)
    comment: str = Field(..., min_length=1, max_length=2000)
    kind: Literal["praise", "correction", "question"] = "correction"


class DrillRecommendation(BaseModel):
    drill_id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    priority: Literal["high", "medium", "low"] = "medium"
    notes: Optional[str] = Field(default=None, max_length=2000)
    reps: Optional[int] = Field(default=None, ge=1)
    sets: Optional[int] = Field(default=None, ge=1)


class ReviewContent(BaseModel):
    rubric_scores: List[RubricScore] = Field(default_factory=list)
    annotations: List[Annotation] = Field(default_factory=list)
    drill_recommendations: List[DrillRecommendation] = Field(default_factory=list)
    overall_feedback: Optional[str] = Field(default=None, max_length=10000)
    next_steps: Optional[str] = Field(default=None, max_length=10000)


# =============================================================================
# Requests
# =============================================================================

class SubmissionCreate(BaseModel):
    media_ref: str = Field(..., max_length=2048)
    skill_tag: str = Field(..., max_length=100)
    athlete_context: Optional[str] = Field(default=None, max_length=5000)
    athlete_goals: Optional[str] = Field(default=None, max_length=5000)
    specific_questions: Optional[str] = Field(default=None, max_length=5000)


class SubmissionPatch(BaseModel):
    """Athlete-owned fields only; workflow fields change through the transition endpoints."""
    media_ref: Optional[str] = Field(default=None, max_length=2048)
    athlete_context: Optional[str] = Field(default=None, max_length=5000)
    athlete_goals: Optional[str] = Field(default=None, max_length=5000)
    specific_questions: Optional[str] = Field(default=None, max_length=5000)


class DeclineRequest(BaseModel):
    reason: str = Field(..., max_length=1000)


class AthleteFeedbackRequest(BaseModel):
    score: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = Field(default=None, max_length=2000)


class CommentCreate(BaseModel):
    body: str = Field(..., max_length=2000)
    parent_comment_id: Optional[UUID] = None
    media_timestamp_s: Optional[int] = Field(default=None, ge=0)


class CommentUpdate(BaseModel):
    body: str = Field(..., max_length=2000)


# =============================================================================
# Responses
# =============================================================================

class SubmissionResponse(BaseModel):
    id: UUID
    athlete_uid: str
    coach_uid: Optional[str]
    media_ref: str
    skill_tag: str
    athlete_context: Optional[str] = None
    athlete_goals: Optional[str] = None
    specific_questions: Optional[str] = None
    status: str
    claimed_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    review_id: Optional[UUID] = None
    decline_reason: Optional[str] = None
    declined_by: Optional[str] = None
    sla_deadline: datetime
    sla_breach: bool = False
    comment_count: int = 0
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubmissionPage(BaseModel):
    items: List[SubmissionResponse]
    next_cursor: Optional[str] = None
    has_more: bool = False


class ReviewResponse(BaseModel):
    id: UUID
    submission_id: UUID
    coach_uid: str
    rubric_scores: List[RubricScore]
    annotations: List[Annotation]
    drill_recommendations: List[DrillRecommendation]
    overall_feedback: Optional[str] = None
    next_steps: Optional[str] = None
    status: str
    average_score: float = 0.0
    athlete_satisfaction: Optional[int] = None
    athlete_feedback: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    published_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CommentResponse(BaseModel):
    id: UUID
    review_id: UUID
    submission_id: UUID
    parent_comment_id: Optional[UUID] = None
    author_uid: str
    author_role: str
    body: str
    media_timestamp_s: Optional[int] = None
    edited: bool = False
    edited_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CommentThread(BaseModel):
    comment: CommentResponse
    replies: List[CommentResponse] = Field(default_factory=list)


class NotificationResponse(BaseModel):
    id: UUID
    recipient_uid: str
    type: str
    title: str
    message: str
    submission_id: Optional[UUID] = None
    review_id: Optional[UUID] = None
    comment_id: Optional[UUID] = None
    read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationPage(BaseModel):
    items: List[NotificationResponse]
    next_cursor: Optional[str] = None
    has_more: bool = False


class UnreadCountResponse(BaseModel):
    unread: int


class NotificationPreferencesResponse(BaseModel):
    email_enabled: bool
    push_enabled: bool
    types: Dict[str, bool]


class NotificationPreferencesUpdate(BaseModel):
    """Partial update; omitted fields and types keep their current values."""
    email_enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    types: Optional[Dict[str, bool]] = None


class CoachStatsResponse(BaseModel):
    total_reviews: int
    average_satisfaction: float
    average_turnaround_hours: float
    reviews_this_week: int
    reviews_this_month: int
