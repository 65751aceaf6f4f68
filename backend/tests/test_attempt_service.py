import pytest

from portal.models.exam_session import AttemptStatus, Submission
from portal.services.scoring_service import ScoringService
from portal.utils.errors import (
    AlreadySubmitted,
    AttemptNotFound,
    ExamNotAvailable,
    ExamNotFound,
)


def _submission(attempt, clock, answers=None, **overrides):
    data = dict(
        attempt_id=attempt.id,
        exam_id=attempt.exam_id,
        candidate_id=attempt.candidate_id,
        answers=answers or {},
        started_at=attempt.started_at,
        submitted_at=clock(),
    )
    data.update(overrides)
    return Submission(**data)


def test_start_creates_attempt_and_sanitized_exam(attempt_service, clock):
    started = attempt_service.start_attempt("exam-1", "cand-1")

    assert started.resumed is False
    assert started.attempt.status == AttemptStatus.IN_PROGRESS
    assert started.attempt.started_at == clock()
    assert started.exam.total_marks == 8
    assert not hasattr(started.exam.questions[0], "correct_option_id")


def test_start_resumes_in_progress_attempt(attempt_service, clock):
    first = attempt_service.start_attempt("exam-1", "cand-1")
    attempt_service.save_answer("exam-1", "cand-1", "q1", "a")
    clock.advance(20)

    second = attempt_service.start_attempt("exam-1", "cand-1")

    assert second.resumed is True
    assert second.attempt.id == first.attempt.id
    assert second.attempt.started_at == first.attempt.started_at
    assert second.attempt.answers == {"q1": "a"}


def test_start_rejects_unavailable_exam(attempt_service):
    with pytest.raises(ExamNotAvailable):
        attempt_service.start_attempt("exam-closed", "cand-1")
    with pytest.raises(ExamNotFound):
        attempt_service.start_attempt("nope", "cand-1")
    assert attempt_service.attempts == {}


def test_start_after_submission_reports_prior_score(attempt_service, clock):
    started = attempt_service.start_attempt("exam-1", "cand-1")
    attempt_service.record_submission(
        _submission(started.attempt, clock, {"q1": "a", "q2": "b"})
    )

    with pytest.raises(AlreadySubmitted) as excinfo:
        attempt_service.start_attempt("exam-1", "cand-1")

    assert excinfo.value.score == 5
    assert excinfo.value.attempt_id == started.attempt.id
    assert len(attempt_service.attempts) == 1


def test_record_submission_scores_and_marks_submitted(attempt_service, clock):
    started = attempt_service.start_attempt("exam-1", "cand-1")
    clock.advance(45)

    result = attempt_service.record_submission(
        _submission(started.attempt, clock, {"q1": "a", "q2": "b"}, violations_count=2)
    )

    assert result.score == 5
    assert result.total_marks == 8
    assert result.time_taken_seconds == 45
    assert result.violations_count == 2
    stored = attempt_service.attempts[started.attempt.id]
    assert stored.status == AttemptStatus.SUBMITTED
    assert stored.score == 5


def test_replayed_submission_returns_stored_result(attempt_service, clock):
    started = attempt_service.start_attempt("exam-1", "cand-1")
    submission = _submission(started.attempt, clock, {"q1": "a"})

    first = attempt_service.record_submission(submission)
    clock.advance(5)
    second = attempt_service.record_submission(submission)

    assert second == first
    assert len(attempt_service.results) == 1


def test_second_distinct_submission_rejected(attempt_service, clock):
    started = attempt_service.start_attempt("exam-1", "cand-1")
    attempt_service.record_submission(_submission(started.attempt, clock))

    with pytest.raises(AlreadySubmitted):
        attempt_service.record_submission(
            _submission(started.attempt, clock, attempt_id="forged")
        )
    assert len(attempt_service.results) == 1


def test_submission_without_active_attempt(attempt_service, clock):
    started = attempt_service.start_attempt("exam-1", "cand-1")

    with pytest.raises(AttemptNotFound):
        attempt_service.record_submission(
            _submission(started.attempt, clock, candidate_id="someone-else")
        )
    with pytest.raises(AttemptNotFound):
        attempt_service.save_answer("exam-1", "someone-else", "q1", "a")


def test_check_submission(attempt_service, clock):
    assert attempt_service.check_submission("exam-1", "cand-1").has_submitted is False

    started = attempt_service.start_attempt("exam-1", "cand-1")
    attempt_service.record_submission(_submission(started.attempt, clock, {"q1": "a"}))
    status = attempt_service.check_submission("exam-1", "cand-1")

    assert status.has_submitted is True
    assert status.score == 5
    assert status.submitted_at == clock()


def test_violation_count_never_decreases(attempt_service):
    started = attempt_service.start_attempt("exam-1", "cand-1")
    attempt_service.save_violations("exam-1", "cand-1", 3)
    attempt_service.save_violations("exam-1", "cand-1", 1)

    assert attempt_service.attempts[started.attempt.id].violations_count == 3


def test_results_listing_and_stats(attempt_service, clock):
    for candidate, answers in [("c1", {"q1": "a"}), ("c2", {"q1": "a", "q2": "c"})]:
        started = attempt_service.start_attempt("exam-1", candidate)
        clock.advance(10)
        attempt_service.record_submission(_submission(started.attempt, clock, answers))

    by_exam = attempt_service.list_results("exam-1")
    assert [r.candidate_id for r in by_exam] == ["c2", "c1"]

    recent_first = attempt_service.list_results()
    assert [r.candidate_id for r in recent_first] == ["c2", "c1"]

    assert [r.score for r in attempt_service.results_for_candidate("c1")] == [5]
    assert attempt_service.stats() == {"total_submissions": 2, "average_score": 6.5}


def test_mark_acknowledged_adopts_remote_result_once(attempt_service, exam, clock):
    started = attempt_service.start_attempt("exam-1", "cand-1")
    remote = ScoringService().build_result(
        exam, _submission(started.attempt, clock, {"q2": "c"})
    )
    stale = remote.model_copy(update={"attempt_id": "other", "score": 0})

    attempt_service.mark_acknowledged(stale)
    assert attempt_service.get_in_progress("exam-1", "cand-1") is not None

    attempt_service.mark_acknowledged(remote)
    attempt_service.mark_acknowledged(remote.model_copy(update={"score": 0}))

    assert attempt_service.get_result(started.attempt.id).score == 3
    assert attempt_service.attempts[started.attempt.id].status == AttemptStatus.SUBMITTED
    assert attempt_service.get_in_progress("exam-1", "cand-1") is None
