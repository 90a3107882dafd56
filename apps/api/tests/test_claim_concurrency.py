"""
Claim exclusivity under real concurrency, plus the end-to-end claim race scenario.

Each claimant runs on its own thread with its own session and connection,
released together by a barrier. The store's conditional UPDATE decides the
winner; every loser must get AlreadyClaimedError.
"""
import threading
from typing import List, Tuple

import pytest

from core.database import SessionLocal
from core.events import listener_count
from core.exceptions import AlreadyClaimedError
from models import (
    NOTIFY_REVIEW_PUBLISHED,
    STATUS_CLAIMED,
    STATUS_COMPLETED,
    Notification,
    Submission,
)
from schemas import ReviewContent, RubricScore
from services import review_workflow, submission_store
from services.queue_projection import my_queue, unclaimed_queue


def _race(submission_id, coach_uids: List[str]) -> List[Tuple[str, object]]:
    """Run Claim for every coach at once; returns (coach_uid, result-or-exception)."""
    barrier = threading.Barrier(len(coach_uids))
    results: List[Tuple[str, object]] = []
    lock = threading.Lock()

    def attempt(coach_uid: str) -> None:
        db = SessionLocal()
        try:
            barrier.wait()
            try:
                submission = review_workflow.claim_submission(db, submission_id, coach_uid)
                db.commit()
                outcome = submission.coach_uid
            except AlreadyClaimedError as e:
                db.rollback()
                outcome = e
        except Exception as e:  # surfaced to the test thread below
            db.rollback()
            outcome = e
        finally:
            db.close()
        with lock:
            results.append((coach_uid, outcome))

    threads = [threading.Thread(target=attempt, args=(uid,)) for uid in coach_uids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


def _open(factory):
    db = SessionLocal()
    try:
        return factory(db)
    finally:
        db.close()


@pytest.mark.parametrize("claimants", [5, 8])
def test_exactly_one_concurrent_claim_wins(make_submission, read_row, claimants):
    submission = make_submission()
    coaches = [f"coach-{i}" for i in range(claimants)]

    results = _race(submission.id, coaches)

    assert len(results) == claimants
    winners = [(uid, outcome) for uid, outcome in results if isinstance(outcome, str)]
    losers = [outcome for _, outcome in results if not isinstance(outcome, str)]

    assert len(winners) == 1
    winner_uid, claimed_by = winners[0]
    assert claimed_by == winner_uid
    assert len(losers) == claimants - 1
    assert all(isinstance(e, AlreadyClaimedError) for e in losers)

    row = read_row(Submission, submission.id)
    assert row.status == STATUS_CLAIMED
    assert row.coach_uid == winner_uid
    assert row.version == 2


def test_races_on_different_submissions_are_independent(make_submission, read_row):
    first = make_submission(media_ref="clip-a")
    second = make_submission(media_ref="clip-b")

    results_a = _race(first.id, ["coach-1", "coach-2", "coach-3", "coach-4", "coach-5"])
    results_b = _race(second.id, ["coach-1", "coach-2", "coach-3", "coach-4", "coach-5"])

    for results, submission in ((results_a, first), (results_b, second)):
        winners = [uid for uid, outcome in results if isinstance(outcome, str)]
        assert len(winners) == 1
        assert read_row(Submission, submission.id).coach_uid == winners[0]


def test_claim_race_end_to_end(db_session, athlete, read_row):
    """
    Athlete creates S → S is in the unclaimed queue → C1 and C2 claim at once →
    exactly one wins → the winner drafts and publishes → S is completed, the
    athlete is notified, and S is in neither coach's queue.
    """
    with _open(lambda db: unclaimed_queue(db)) as unclaimed:
        submission = submission_store.create_submission(
            db_session, athlete_uid=athlete.uid, media_ref="clip1", skill_tag="guard-pass"
        )
        db_session.commit()

        assert [d["id"] for d in unclaimed.documents] == [str(submission.id)]

        with _open(lambda db: my_queue(db, "C1")) as queue_c1, _open(lambda db: my_queue(db, "C2")) as queue_c2:
            results = dict(_race(submission.id, ["C1", "C2"]))

            winners = [uid for uid, outcome in results.items() if isinstance(outcome, str)]
            assert len(winners) == 1
            winner = winners[0]
            loser = "C2" if winner == "C1" else "C1"
            assert isinstance(results[loser], AlreadyClaimedError)

            # Claimed: gone from the open queue, present only in the winner's queue.
            assert unclaimed.documents == []
            winner_queue = queue_c1 if winner == "C1" else queue_c2
            loser_queue = queue_c2 if winner == "C1" else queue_c1
            assert [d["id"] for d in winner_queue.documents] == [str(submission.id)]
            assert loser_queue.documents == []

            row = read_row(Submission, submission.id)
            assert row.status == STATUS_CLAIMED and row.coach_uid == winner

            content = ReviewContent(rubric_scores=[RubricScore(criterion_id="posture", score=8)])
            review_workflow.save_draft_review(db_session, submission.id, winner, content)
            db_session.commit()
            review_workflow.publish_review(db_session, submission.id, winner)
            db_session.commit()

            row = read_row(Submission, submission.id)
            assert row.status == STATUS_COMPLETED
            assert queue_c1.documents == []
            assert queue_c2.documents == []

    notes = db_session.query(Notification).filter(
        Notification.recipient_uid == athlete.uid,
        Notification.type == NOTIFY_REVIEW_PUBLISHED,
    ).all()
    assert len(notes) == 1
    assert listener_count() == 0
