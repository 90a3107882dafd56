"""
PublishReview lands all three effects (review published, submission completed,
athlete notified) or none of them.
"""
import pytest

from core.events import COLLECTION_SUBMISSIONS, subscribe
from models import (
    REVIEW_DRAFT,
    REVIEW_PUBLISHED,
    STATUS_CLAIMED,
    STATUS_COMPLETED,
    Notification,
    Review,
    Submission,
)
from schemas import ReviewContent, RubricScore
from services import review_workflow


@pytest.fixture
def ready_to_publish(db_session, make_submission, coach):
    submission = make_submission()
    review_workflow.claim_submission(db_session, submission.id, coach.uid)
    review_workflow.save_draft_review(
        db_session,
        submission.id,
        coach.uid,
        ReviewContent(rubric_scores=[RubricScore(criterion_id="base", score=6)]),
    )
    db_session.commit()
    return submission


def _published_state(read_row, submission_id, review_id):
    return read_row(Submission, submission_id).status, read_row(Review, review_id).status


def test_failure_after_review_flip_rolls_everything_back(
    db_session, ready_to_publish, coach, athlete, read_row, monkeypatch
):
    submission_id = ready_to_publish.id
    review_id = db_session.query(Review.id).scalar()
    notes_before = db_session.query(Notification).filter(Notification.recipient_uid == athlete.uid).count()
    db_session.commit()

    def broken_enqueue(*args, **kwargs):
        raise RuntimeError("notification store unavailable")

    monkeypatch.setattr(review_workflow, "enqueue_notification", broken_enqueue)

    seen = []
    unsubscribe = subscribe(COLLECTION_SUBMISSIONS, seen.append)
    try:
        with pytest.raises(RuntimeError):
            review_workflow.publish_review(db_session, submission_id, coach.uid)
        db_session.rollback()
    finally:
        unsubscribe()

    assert _published_state(read_row, submission_id, review_id) == (STATUS_CLAIMED, REVIEW_DRAFT)
    assert db_session.query(Notification).filter(Notification.recipient_uid == athlete.uid).count() == notes_before
    # Nothing was committed, so nothing was announced.
    assert seen == []


def test_successful_publish_lands_all_effects_together(
    db_session, ready_to_publish, coach, athlete, read_row
):
    seen = []
    unsubscribe = subscribe(COLLECTION_SUBMISSIONS, seen.append)
    try:
        review = review_workflow.publish_review(db_session, ready_to_publish.id, coach.uid)
        # Flushed but not committed: no subscriber has heard of it yet.
        assert seen == []
        db_session.commit()
    finally:
        unsubscribe()

    assert _published_state(read_row, ready_to_publish.id, review.id) == (STATUS_COMPLETED, REVIEW_PUBLISHED)
    assert [c.document["status"] for c in seen] == [STATUS_COMPLETED]
    assert db_session.query(Notification).filter(Notification.type == "review_published").count() == 1


def test_readers_never_see_half_a_publish(db_session, ready_to_publish, coach, read_row):
    """Every committed state pairs completed with published and claimed with draft."""
    review_id = db_session.query(Review.id).scalar()
    db_session.commit()
    states = [_published_state(read_row, ready_to_publish.id, review_id)]

    review_workflow.publish_review(db_session, ready_to_publish.id, coach.uid)
    db_session.commit()
    states.append(_published_state(read_row, ready_to_publish.id, review_id))

    assert states == [(STATUS_CLAIMED, REVIEW_DRAFT), (STATUS_COMPLETED, REVIEW_PUBLISHED)]
