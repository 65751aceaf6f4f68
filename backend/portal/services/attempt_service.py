import logging
import threading
import uuid
from typing import Dict, List, Optional, Tuple

from portal.models.exam_session import (
    Attempt,
    AttemptStatus,
    StartedAttempt,
    Submission,
    SubmissionResult,
    SubmissionStatus,
)
from portal.services.exam_service import ExamService
from portal.services.scoring_service import ScoringService
from portal.session.attempt_timer import Clock, utcnow
from portal.utils.errors import AlreadySubmitted, AttemptNotFound, ExamNotAvailable

logger = logging.getLogger(__name__)

Pair = Tuple[str, str]


class AttemptService:
    """Attempt records and the terminal submission store.

    At most one SUBMITTED record exists per (exam, candidate); a replay of
    the same attempt's submission returns the stored result, anything else
    for that pair is rejected.
    """

    def __init__(
        self,
        exam_service: ExamService,
        scoring_service: Optional[ScoringService] = None,
        clock: Clock = utcnow,
    ):
        self.exam_service = exam_service
        self.scoring_service = scoring_service or ScoringService()
        self._clock = clock
        self._lock = threading.RLock()
        self.attempts: Dict[str, Attempt] = {}
        self.results: Dict[str, SubmissionResult] = {}
        self._in_progress: Dict[Pair, str] = {}
        self._submitted: Dict[Pair, str] = {}

    def start_attempt(self, exam_id: str, candidate_id: str) -> StartedAttempt:
        """Create an attempt, or resume the pair's IN_PROGRESS one.

        All gates are checked before anything is written.
        """
        exam = self.exam_service.get_exam(exam_id)
        if not exam.is_startable:
            raise ExamNotAvailable(exam_id, exam.status.value)

        pair = (exam_id, candidate_id)
        with self._lock:
            prior = self._submitted_result(pair)
            if prior is not None:
                raise AlreadySubmitted(
                    exam_id,
                    candidate_id,
                    attempt_id=prior.attempt_id,
                    score=prior.score,
                    submitted_at=prior.submitted_at,
                )

            attempt_id = self._in_progress.get(pair)
            resumed = attempt_id is not None
            if resumed:
                attempt = self.attempts[attempt_id]
            else:
                attempt = Attempt(
                    id=uuid.uuid4().hex,
                    exam_id=exam_id,
                    candidate_id=candidate_id,
                    started_at=self._clock(),
                )
                self.attempts[attempt.id] = attempt
                self._in_progress[pair] = attempt.id

        logger.info(
            "%s attempt %s for exam %s / candidate %s",
            "Resumed" if resumed else "Started",
            attempt.id,
            exam_id,
            candidate_id,
        )
        return StartedAttempt(
            attempt=attempt.model_copy(deep=True),
            exam=exam.sanitized(),
            resumed=resumed,
        )

    def get_in_progress(self, exam_id: str, candidate_id: str) -> Optional[Attempt]:
        with self._lock:
            attempt_id = self._in_progress.get((exam_id, candidate_id))
            if attempt_id is None:
                return None
            return self.attempts[attempt_id].model_copy(deep=True)

    def _require_in_progress(self, exam_id: str, candidate_id: str) -> Attempt:
        attempt_id = self._in_progress.get((exam_id, candidate_id))
        if attempt_id is None:
            raise AttemptNotFound(exam_id, candidate_id)
        return self.attempts[attempt_id]

    def save_answer(
        self, exam_id: str, candidate_id: str, question_id: str, option_id: str
    ) -> None:
        """Incremental auto-save of a single answer"""
        with self._lock:
            attempt = self._require_in_progress(exam_id, candidate_id)
            attempt.answers[question_id] = option_id

    def save_violations(self, exam_id: str, candidate_id: str, count: int) -> None:
        with self._lock:
            attempt = self._require_in_progress(exam_id, candidate_id)
            attempt.violations_count = max(attempt.violations_count, count)

    def record_submission(self, submission: Submission) -> SubmissionResult:
        exam = self.exam_service.get_exam(submission.exam_id)
        pair = (submission.exam_id, submission.candidate_id)

        with self._lock:
            existing_id = self._submitted.get(pair)
            if existing_id is not None:
                existing = self.results[existing_id]
                if existing_id == submission.attempt_id:
                    logger.info("Replayed submission for attempt %s", existing_id)
                    return existing.model_copy(deep=True)
                raise AlreadySubmitted(
                    submission.exam_id,
                    submission.candidate_id,
                    attempt_id=existing.attempt_id,
                    score=existing.score,
                    submitted_at=existing.submitted_at,
                )

            attempt_id = self._in_progress.get(pair)
            if attempt_id is None or attempt_id != submission.attempt_id:
                raise AttemptNotFound(submission.exam_id, submission.candidate_id)

            attempt = self.attempts[attempt_id]
            result = self.scoring_service.build_result(
                exam, submission, started_at=attempt.started_at
            )

            self._close(pair, attempt, result)

        logger.info(
            "Recorded submission for attempt %s: score %d/%d%s",
            attempt_id,
            result.score,
            result.total_marks,
            " (auto)" if result.auto_submitted else "",
        )
        return result.model_copy(deep=True)

    def mark_acknowledged(self, result: SubmissionResult) -> None:
        """Adopt a result acknowledged by a remote sink for a local attempt"""
        pair = (result.exam_id, result.candidate_id)
        with self._lock:
            if pair in self._submitted:
                return
            if self._in_progress.get(pair) != result.attempt_id:
                return
            self._close(pair, self.attempts[result.attempt_id], result.model_copy(deep=True))
        logger.info("Adopted acknowledged result for attempt %s", result.attempt_id)

    def _close(self, pair: Pair, attempt: Attempt, result: SubmissionResult) -> None:
        self.attempts[attempt.id] = attempt.model_copy(
            update={
                "answers": dict(result.answers),
                "status": AttemptStatus.SUBMITTED,
                "submitted_at": result.submitted_at,
                "score": result.score,
                "time_taken_seconds": result.time_taken_seconds,
                "auto_submitted": result.auto_submitted,
                "violations_count": result.violations_count,
            }
        )
        self.results[attempt.id] = result
        self._submitted[pair] = attempt.id
        del self._in_progress[pair]

    def _submitted_result(self, pair: Pair) -> Optional[SubmissionResult]:
        attempt_id = self._submitted.get(pair)
        if attempt_id is None:
            return None
        return self.results[attempt_id]

    def check_submission(self, exam_id: str, candidate_id: str) -> SubmissionStatus:
        with self._lock:
            result = self._submitted_result((exam_id, candidate_id))
        if result is None:
            return SubmissionStatus(has_submitted=False)
        return SubmissionStatus(
            has_submitted=True,
            attempt_id=result.attempt_id,
            score=result.score,
            submitted_at=result.submitted_at,
        )

    def get_result(self, attempt_id: str) -> Optional[SubmissionResult]:
        with self._lock:
            result = self.results.get(attempt_id)
        return result.model_copy(deep=True) if result else None

    def list_results(self, exam_id: Optional[str] = None) -> List[SubmissionResult]:
        """Submitted results for administrator review"""
        with self._lock:
            results = list(self.results.values())
        if exam_id is not None:
            results = [r for r in results if r.exam_id == exam_id]
            return sorted(results, key=lambda r: -r.score)
        return sorted(results, key=lambda r: r.submitted_at, reverse=True)

    def results_for_candidate(self, candidate_id: str) -> List[SubmissionResult]:
        return [r for r in self.list_results() if r.candidate_id == candidate_id]

    def stats(self) -> Dict:
        results = self.list_results()
        total = len(results)
        average = sum(r.score for r in results) / total if total else 0
        return {"total_submissions": total, "average_score": average}
