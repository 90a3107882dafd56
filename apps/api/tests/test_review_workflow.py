"""
Review workflow state machine.

Every transition test re-reads the submission from a fresh session and
checks the claim invariant against committed state.
"""
from uuid import uuid4

import pytest

from core.config import settings
from core.exceptions import (
    AlreadyClaimedError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from models import (
    NOTIFY_REVIEW_PUBLISHED,
    NOTIFY_SUBMISSION_CLAIMED,
    NOTIFY_SUBMISSION_DECLINED,
    REVIEW_DRAFT,
    REVIEW_PUBLISHED,
    STATUS_CLAIMED,
    STATUS_COMPLETED,
    STATUS_DECLINED,
    STATUS_PENDING,
    Notification,
    Review,
    Submission,
)
from schemas import Annotation, ReviewContent, RubricScore
from services import review_workflow


def _content(scores=1, annotations=0) -> ReviewContent:
    return ReviewContent(
        rubric_scores=[RubricScore(criterion_id=f"c{i}", score=7, comment="Solid frames") for i in range(scores)],
        annotations=[Annotation(timestamp_s=12.5 + i, comment="Elbow flares here") for i in range(annotations)],
        overall_feedback="Good base, work on grips.",
    )


@pytest.fixture
def claimed(db_session, make_submission, coach):
    submission = make_submission()
    review_workflow.claim_submission(db_session, submission.id, coach.uid)
    db_session.commit()
    return submission


@pytest.fixture
def drafted(db_session, claimed, coach):
    review_workflow.save_draft_review(db_session, claimed.id, coach.uid, _content())
    db_session.commit()
    return claimed


class TestClaim:
    def test_claim_assigns_coach(self, db_session, make_submission, coach, read_row, check_claim_invariant):
        submission = make_submission()
        result = review_workflow.claim_submission(db_session, submission.id, coach.uid)
        db_session.commit()

        assert result.status == STATUS_CLAIMED
        assert result.coach_uid == coach.uid
        assert result.claimed_at is not None

        row = read_row(Submission, submission.id)
        assert row.status == STATUS_CLAIMED
        assert row.version == 2
        check_claim_invariant(row)

    def test_claim_notifies_athlete(self, db_session, claimed, athlete):
        notes = db_session.query(Notification).filter(Notification.recipient_uid == athlete.uid).all()
        assert [n.type for n in notes] == [NOTIFY_SUBMISSION_CLAIMED]

    def test_claim_missing_submission(self, db_session, coach):
        with pytest.raises(NotFoundError):
            review_workflow.claim_submission(db_session, uuid4(), coach.uid)

    def test_second_claim_is_already_claimed(self, db_session, claimed, other_coach, read_row):
        submission_id = claimed.id
        with pytest.raises(AlreadyClaimedError) as exc:
            review_workflow.claim_submission(db_session, submission_id, other_coach.uid)
        db_session.rollback()

        assert exc.value.status_code == 409
        assert exc.value.error_code == "ALREADY_CLAIMED"
        assert read_row(Submission, submission_id).coach_uid == "coach-1"

    def test_already_claimed_is_an_invalid_state(self):
        assert issubclass(AlreadyClaimedError, InvalidStateError)

    def test_claiming_terminal_submission_is_invalid_state(self, db_session, drafted, coach, other_coach):
        review_workflow.publish_review(db_session, drafted.id, coach.uid)
        db_session.commit()

        with pytest.raises(InvalidStateError) as exc:
            review_workflow.claim_submission(db_session, drafted.id, other_coach.uid)
        assert not isinstance(exc.value, AlreadyClaimedError)


class TestDraft:
    def test_save_draft_upserts_single_review(self, db_session, claimed, coach, read_row):
        first = review_workflow.save_draft_review(db_session, claimed.id, coach.uid, _content(scores=1))
        db_session.commit()
        second = review_workflow.save_draft_review(db_session, claimed.id, coach.uid, _content(scores=3))
        db_session.commit()

        assert first.id == second.id
        stored = read_row(Review, first.id)
        assert stored.status == REVIEW_DRAFT
        assert len(stored.rubric_scores) == 3
        # Drafting does not move the submission.
        assert read_row(Submission, claimed.id).status == STATUS_CLAIMED
        assert db_session.query(Review).count() == 1

    def test_non_claimant_cannot_draft(self, db_session, claimed, other_coach):
        with pytest.raises(ForbiddenError) as exc:
            review_workflow.save_draft_review(db_session, claimed.id, other_coach.uid, _content())
        assert exc.value.status_code == 403

    def test_pending_submission_cannot_be_drafted(self, db_session, make_submission, coach):
        submission = make_submission()
        with pytest.raises(InvalidStateError):
            review_workflow.save_draft_review(db_session, submission.id, coach.uid, _content())

    def test_published_review_cannot_be_edited(self, db_session, drafted, coach):
        review_workflow.publish_review(db_session, drafted.id, coach.uid)
        db_session.commit()
        with pytest.raises(InvalidStateError):
            review_workflow.save_draft_review(db_session, drafted.id, coach.uid, _content())


class TestPublish:
    def test_publish_completes_submission_and_notifies(
        self, db_session, drafted, coach, athlete, read_row, check_claim_invariant
    ):
        review = review_workflow.publish_review(db_session, drafted.id, coach.uid)
        db_session.commit()

        stored_review = read_row(Review, review.id)
        assert stored_review.status == REVIEW_PUBLISHED
        assert stored_review.published_at is not None

        row = read_row(Submission, drafted.id)
        assert row.status == STATUS_COMPLETED
        assert row.review_id == review.id
        assert row.reviewed_at is not None
        assert row.coach_uid == coach.uid
        check_claim_invariant(row)

        types = [
            n.type for n in db_session.query(Notification).filter(Notification.recipient_uid == athlete.uid)
        ]
        assert NOTIFY_REVIEW_PUBLISHED in types

    def test_empty_review_is_validation_error(self, db_session, claimed, coach, read_row):
        submission_id = claimed.id
        review_workflow.save_draft_review(db_session, submission_id, coach.uid, _content(scores=0, annotations=0))
        db_session.commit()

        with pytest.raises(ValidationError) as exc:
            review_workflow.publish_review(db_session, submission_id, coach.uid)
        db_session.rollback()

        assert exc.value.status_code == 400
        assert read_row(Submission, submission_id).status == STATUS_CLAIMED

    def test_annotations_alone_are_enough(self, db_session, claimed, coach):
        review_workflow.save_draft_review(db_session, claimed.id, coach.uid, _content(scores=0, annotations=1))
        review = review_workflow.publish_review(db_session, claimed.id, coach.uid)
        db_session.commit()
        assert review.status == REVIEW_PUBLISHED

    def test_publish_without_draft_is_invalid_state(self, db_session, claimed, coach):
        with pytest.raises(InvalidStateError):
            review_workflow.publish_review(db_session, claimed.id, coach.uid)

    def test_other_coach_cannot_publish_and_nothing_changes(
        self, db_session, drafted, other_coach, read_row
    ):
        submission_id = drafted.id
        before = read_row(Submission, submission_id)
        notes_before = db_session.query(Notification).count()
        db_session.commit()

        with pytest.raises(ForbiddenError):
            review_workflow.publish_review(db_session, submission_id, other_coach.uid)
        db_session.rollback()

        after = read_row(Submission, submission_id)
        assert after.status == STATUS_CLAIMED
        assert after.version == before.version
        assert db_session.query(Review).one().status == REVIEW_DRAFT
        assert db_session.query(Notification).count() == notes_before

    def test_publishing_twice_is_invalid_state(self, db_session, drafted, coach):
        review_workflow.publish_review(db_session, drafted.id, coach.uid)
        db_session.commit()
        with pytest.raises(InvalidStateError):
            review_workflow.publish_review(db_session, drafted.id, coach.uid)


class TestRelease:
    def test_release_returns_submission_to_pending(
        self, db_session, claimed, coach, other_coach, read_row, check_claim_invariant
    ):
        review_workflow.release_claim(db_session, claimed.id, coach.uid)
        db_session.commit()

        row = read_row(Submission, claimed.id)
        assert row.status == STATUS_PENDING
        assert row.coach_uid is None
        assert row.claimed_at is None
        check_claim_invariant(row)

        # Someone else can now take it.
        review_workflow.claim_submission(db_session, claimed.id, other_coach.uid)
        db_session.commit()
        assert read_row(Submission, claimed.id).coach_uid == other_coach.uid

    def test_second_release_is_invalid_state(self, db_session, claimed, coach):
        review_workflow.release_claim(db_session, claimed.id, coach.uid)
        db_session.commit()

        with pytest.raises(InvalidStateError) as exc:
            review_workflow.release_claim(db_session, claimed.id, coach.uid)
        assert exc.value.status_code == 409
        assert exc.value.error_code == "INVALID_STATE"

    def test_other_coach_cannot_release(self, db_session, claimed, other_coach, read_row):
        submission_id = claimed.id
        with pytest.raises(ForbiddenError):
            review_workflow.release_claim(db_session, submission_id, other_coach.uid)
        db_session.rollback()
        assert read_row(Submission, submission_id).coach_uid == "coach-1"

    def test_release_discards_draft(self, db_session, drafted, coach):
        review_workflow.release_claim(db_session, drafted.id, coach.uid)
        db_session.commit()
        assert db_session.query(Review).count() == 0

    def test_release_can_be_switched_off(self, db_session, claimed, coach, monkeypatch):
        monkeypatch.setattr(settings, "ALLOW_CLAIM_RELEASE", False)
        with pytest.raises(ForbiddenError):
            review_workflow.release_claim(db_session, claimed.id, coach.uid)


class TestDecline:
    def test_coach_declines_pending(self, db_session, make_submission, coach, athlete, read_row):
        submission = make_submission()
        review_workflow.decline_submission(db_session, submission.id, coach, "Video is too dark")
        db_session.commit()

        row = read_row(Submission, submission.id)
        assert row.status == STATUS_DECLINED
        assert row.decline_reason == "Video is too dark"
        assert row.declined_by == coach.uid
        assert db_session.query(Review).count() == 0

        note = db_session.query(Notification).filter(Notification.recipient_uid == athlete.uid).one()
        assert note.type == NOTIFY_SUBMISSION_DECLINED
        assert "too dark" in note.message

    def test_claimant_declines_claimed(self, db_session, claimed, coach, read_row):
        review_workflow.decline_submission(db_session, claimed.id, coach, "Wrong discipline")
        db_session.commit()
        assert read_row(Submission, claimed.id).status == STATUS_DECLINED

    def test_other_coach_cannot_decline_claimed(self, db_session, claimed, other_coach):
        with pytest.raises(ForbiddenError):
            review_workflow.decline_submission(db_session, claimed.id, other_coach, "Not mine")

    def test_athlete_cannot_decline(self, db_session, make_submission, athlete):
        submission = make_submission()
        with pytest.raises(ForbiddenError):
            review_workflow.decline_submission(db_session, submission.id, athlete, "Changed my mind")

    def test_admin_can_decline(self, db_session, claimed, admin, read_row):
        review_workflow.decline_submission(db_session, claimed.id, admin, "Policy violation")
        db_session.commit()
        assert read_row(Submission, claimed.id).status == STATUS_DECLINED

    def test_reason_required(self, db_session, make_submission, coach):
        submission = make_submission()
        with pytest.raises(ValidationError):
            review_workflow.decline_submission(db_session, submission.id, coach, "   ")

    def test_declined_is_terminal(self, db_session, make_submission, coach, other_coach):
        submission = make_submission()
        review_workflow.decline_submission(db_session, submission.id, coach, "Duplicate upload")
        db_session.commit()

        with pytest.raises(InvalidStateError):
            review_workflow.claim_submission(db_session, submission.id, other_coach.uid)
        with pytest.raises(InvalidStateError):
            review_workflow.decline_submission(db_session, submission.id, coach, "Again")


class TestReviewAccess:
    def test_athlete_cannot_see_draft(self, db_session, drafted, athlete):
        with pytest.raises(NotFoundError):
            review_workflow.get_review_for_submission(db_session, drafted.id, athlete)

    def test_athlete_sees_published(self, db_session, drafted, coach, athlete):
        review_workflow.publish_review(db_session, drafted.id, coach.uid)
        db_session.commit()
        review = review_workflow.get_review_for_submission(db_session, drafted.id, athlete)
        assert review.status == REVIEW_PUBLISHED

    def test_stranger_is_forbidden(self, db_session, drafted, other_athlete):
        with pytest.raises(ForbiddenError):
            review_workflow.get_review_for_submission(db_session, drafted.id, other_athlete)

    def test_author_sees_draft(self, db_session, drafted, coach):
        review = review_workflow.get_review_for_submission(db_session, drafted.id, coach)
        assert review.status == REVIEW_DRAFT


class TestAthleteFeedback:
    def test_athlete_rates_published_review(self, db_session, drafted, coach, athlete, read_row):
        review = review_workflow.publish_review(db_session, drafted.id, coach.uid)
        db_session.commit()

        review_workflow.submit_athlete_feedback(db_session, review.id, athlete.uid, 5, "Super helpful")
        db_session.commit()

        stored = read_row(Review, review.id)
        assert stored.athlete_satisfaction == 5
        assert stored.athlete_feedback == "Super helpful"

    def test_draft_cannot_be_rated(self, db_session, drafted, athlete):
        review = db_session.query(Review).one()
        with pytest.raises(InvalidStateError):
            review_workflow.submit_athlete_feedback(db_session, review.id, athlete.uid, 4)

    def test_only_owner_rates(self, db_session, drafted, coach, other_athlete):
        review = review_workflow.publish_review(db_session, drafted.id, coach.uid)
        db_session.commit()
        with pytest.raises(ForbiddenError):
            review_workflow.submit_athlete_feedback(db_session, review.id, other_athlete.uid, 4)

    def test_score_range(self, db_session, drafted, coach, athlete):
        review = review_workflow.publish_review(db_session, drafted.id, coach.uid)
        db_session.commit()
        with pytest.raises(ValidationError):
            review_workflow.submit_athlete_feedback(db_session, review.id, athlete.uid, 9)
