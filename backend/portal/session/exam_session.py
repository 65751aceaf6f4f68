import asyncio
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol, Set

from portal.models.catalog import Exam
from portal.models.exam_session import (
    Attempt,
    AttemptStatus,
    SessionSnapshot,
    Submission,
    SubmissionResult,
)
from portal.services.scoring_service import ScoringService
from portal.services.submission_sink import SubmissionSink, deliver_with_retry
from portal.session.attempt_timer import AttemptTimer, Clock, utcnow
from portal.session.integrity_monitor import IntegrityMonitor, ViolationEvent
from portal.session.result_cache import ResultCache
from portal.utils.errors import (
    AlreadySubmitted,
    ConfirmationRequired,
    DeliveryTransient,
    FinishNotAvailable,
    InvalidNavigation,
    PortalError,
    SessionNotStarted,
    UnknownQuestion,
)
from portal.utils.state_machine import SessionState, SessionStateMachine

logger = logging.getLogger(__name__)


class FinishTrigger(str, Enum):
    MANUAL = "manual"
    TIMEOUT = "timeout"
    EXIT = "exit"


@dataclass(slots=True)
class FinalizeOutcome:
    result: SubmissionResult
    first: bool  # this call committed the attempt
    acknowledged: bool


class AttemptRecorder(Protocol):
    """Best-effort incremental persistence of an in-progress attempt"""

    def save_answer(
        self, exam_id: str, candidate_id: str, question_id: str, option_id: str
    ) -> None: ...

    def save_violations(self, exam_id: str, candidate_id: str, count: int) -> None: ...


class ExamSession:
    """One candidate's attempt at one exam.

    Manual finish, timer expiry and exit all funnel into ``finalize``, which
    commits the attempt exactly once and then delivers it to the submission
    sink until acknowledged.
    """

    def __init__(
        self,
        exam: Exam,
        attempt: Attempt,
        sink: SubmissionSink,
        *,
        clock: Clock = utcnow,
        recorder: Optional[AttemptRecorder] = None,
        result_cache: Optional[ResultCache] = None,
        scoring_service: Optional[ScoringService] = None,
        tick_seconds: float = 1.0,
        delivery_max_attempts: int = 5,
        delivery_backoff_seconds: float = 0.5,
        on_released: Optional[Callable[["ExamSession"], None]] = None,
    ) -> None:
        if attempt.is_submitted:
            raise AlreadySubmitted(
                attempt.exam_id,
                attempt.candidate_id,
                attempt_id=attempt.id,
                score=attempt.score,
                submitted_at=attempt.submitted_at,
            )
        self.exam = exam
        self.attempt = attempt.model_copy(deep=True)
        self.current_index = 0
        self.flagged: Set[str] = set()
        self.pending_sync = False

        self._sink = sink
        self._clock = clock
        self._recorder = recorder
        self._result_cache = result_cache
        self._scoring = scoring_service or ScoringService()
        self._delivery_max_attempts = delivery_max_attempts
        self._delivery_backoff_seconds = delivery_backoff_seconds
        self._on_released = on_released

        self._machine = SessionStateMachine()
        # Single terminal guard shared by every mutation and by finalize
        self._guard = threading.Lock()
        self._result: Optional[SubmissionResult] = None
        self._delivery: Optional[asyncio.Future] = None

        self.monitor = IntegrityMonitor(
            listener=self._on_violation,
            initial_count=attempt.violations_count,
            clock=clock,
        )
        self.timer = AttemptTimer(
            exam.duration_mins,
            attempt.started_at,
            on_expire=self._on_timer_expired,
            clock=clock,
            tick_seconds=tick_seconds,
        )

    # -- state ---------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._machine.get_state()

    @property
    def result(self) -> Optional[SubmissionResult]:
        return self._result

    @property
    def question_count(self) -> int:
        return len(self.exam.questions)

    @property
    def is_last_question(self) -> bool:
        return self.current_index == self.question_count - 1

    def start(self, run_timer: bool = True) -> None:
        """Move NOT_STARTED -> IN_PROGRESS and activate timer and monitor."""
        with self._guard:
            if self.state == SessionState.IN_PROGRESS:
                return
            if not self._machine.transition(SessionState.IN_PROGRESS):
                raise self._already_submitted()
            self.monitor.start()
        if run_timer:
            self.timer.start()
        logger.info(
            "Session started for attempt %s (exam %s, candidate %s)",
            self.attempt.id,
            self.exam.id,
            self.attempt.candidate_id,
        )

    def _require_in_progress(self) -> None:
        state = self.state
        if state == SessionState.NOT_STARTED:
            raise SessionNotStarted()
        if state != SessionState.IN_PROGRESS:
            raise self._already_submitted()

    def _already_submitted(self) -> AlreadySubmitted:
        result = self._result
        return AlreadySubmitted(
            self.exam.id,
            self.attempt.candidate_id,
            attempt_id=self.attempt.id,
            score=result.score if result else None,
            submitted_at=result.submitted_at if result else None,
        )

    # -- candidate input -----------------------------------------------------

    def record_answer(self, question_id: str, option_id: str) -> None:
        with self._guard:
            self._require_in_progress()
            if self.exam.get_question(question_id) is None:
                raise UnknownQuestion(question_id)
            self.attempt.answers[question_id] = option_id
        self._autosave_answer(question_id, option_id)

    def toggle_flag(self, question_id: str) -> bool:
        """Toggle the review marker and return whether it is now set."""
        with self._guard:
            self._require_in_progress()
            if self.exam.get_question(question_id) is None:
                raise UnknownQuestion(question_id)
            if question_id in self.flagged:
                self.flagged.discard(question_id)
                return False
            self.flagged.add(question_id)
            return True

    def navigate(self, index: int) -> int:
        with self._guard:
            self._require_in_progress()
            if not 0 <= index < self.question_count:
                raise InvalidNavigation(index, self.question_count)
            self.current_index = index
            return index

    def next_question(self) -> int:
        return self.navigate(min(self.current_index + 1, self.question_count - 1))

    def previous_question(self) -> int:
        return self.navigate(max(self.current_index - 1, 0))

    # -- integrity -----------------------------------------------------------

    def report_visibility(self, hidden: bool) -> Optional[ViolationEvent]:
        with self._guard:
            if self.state != SessionState.IN_PROGRESS:
                return None
            return self.monitor.visibility_changed(hidden)

    def report_blur(self, document_hidden: bool) -> Optional[ViolationEvent]:
        with self._guard:
            if self.state != SessionState.IN_PROGRESS:
                return None
            return self.monitor.window_blurred(document_hidden)

    def acknowledge_warning(self) -> None:
        self.monitor.acknowledge()

    def _on_violation(self, event: ViolationEvent) -> None:
        if self._recorder is None:
            return
        try:
            self._recorder.save_violations(
                self.exam.id, self.attempt.candidate_id, event.violations_count
            )
        except PortalError as e:
            logger.warning("Could not persist violation count: %s", e)

    # -- terminal triggers ---------------------------------------------------

    async def finish(self, confirmed: bool, from_palette: bool = False) -> FinalizeOutcome:
        """Candidate-initiated finish from the last question or the palette."""
        if self.state == SessionState.IN_PROGRESS:
            if not confirmed:
                raise ConfirmationRequired()
            if not from_palette and not self.is_last_question:
                raise FinishNotAvailable()
        return await self.finalize(FinishTrigger.MANUAL)

    async def exit(self) -> FinalizeOutcome:
        """Leaving the exam submits the current answers."""
        return await self.finalize(FinishTrigger.EXIT)

    async def _on_timer_expired(self) -> Optional[FinalizeOutcome]:
        try:
            return await self.finalize(FinishTrigger.TIMEOUT)
        except PortalError:
            # Runs on the tick task, where nobody awaits the error
            logger.exception("Auto-submit of attempt %s failed", self.attempt.id)
            return None

    async def tick(self) -> SessionSnapshot:
        """Recompute remaining time, auto-submitting on expiry."""
        if self.state == SessionState.IN_PROGRESS:
            remaining = await self.timer.check()
        else:
            remaining = self.timer.remaining()
        return self.snapshot(remaining)

    # -- finalize ------------------------------------------------------------

    async def finalize(self, trigger: FinishTrigger = FinishTrigger.MANUAL) -> FinalizeOutcome:
        """Commit the attempt once and deliver it until acknowledged.

        Repeated or concurrent calls return the committed result; only the
        first caller gets ``first=True``.
        """
        with self._guard:
            if self.state == SessionState.NOT_STARTED:
                raise SessionNotStarted()
            first = self._result is None
            if first:
                self._machine.transition(SessionState.SUBMITTING)
                self._result = self._commit(trigger)
            if self._delivery is None or (self._delivery.done() and self.pending_sync):
                self._delivery = asyncio.ensure_future(
                    self._deliver(self._result.submission())
                )
            delivery = self._delivery

        if first and self._result_cache is not None:
            self._result_cache.store(self._result.model_copy(update={"pending_sync": True}))

        await asyncio.shield(delivery)
        return FinalizeOutcome(
            result=self._result, first=first, acknowledged=not self.pending_sync
        )

    def _commit(self, trigger: FinishTrigger) -> SubmissionResult:
        now = self._clock()
        submission = Submission(
            attempt_id=self.attempt.id,
            exam_id=self.exam.id,
            candidate_id=self.attempt.candidate_id,
            answers=dict(self.attempt.answers),
            auto_submitted=trigger == FinishTrigger.TIMEOUT,
            violations_count=self.monitor.violations_count,
            started_at=self.attempt.started_at,
            submitted_at=now,
        )
        result = self._scoring.build_result(self.exam, submission)

        self.attempt = self.attempt.model_copy(
            update={
                "status": AttemptStatus.SUBMITTED,
                "submitted_at": result.submitted_at,
                "score": result.score,
                "time_taken_seconds": result.time_taken_seconds,
                "auto_submitted": result.auto_submitted,
                "violations_count": result.violations_count,
            }
        )
        self.timer.stop()
        self.monitor.stop()
        logger.info(
            "Attempt %s committed via %s: score %d/%d in %ds, %d violations",
            self.attempt.id,
            trigger.value,
            result.score,
            result.total_marks,
            result.time_taken_seconds,
            result.violations_count,
        )
        return result

    async def _deliver(self, submission: Submission) -> None:
        try:
            acknowledged = await deliver_with_retry(
                self._sink,
                submission,
                max_attempts=self._delivery_max_attempts,
                backoff_seconds=self._delivery_backoff_seconds,
            )
        except DeliveryTransient as e:
            self.pending_sync = True
            self._result = self._result.model_copy(update={"pending_sync": True})
            logger.warning(
                "Delivery of attempt %s pending sync: %s", submission.attempt_id, e
            )
            return

        with self._guard:
            self.pending_sync = False
            self._result = acknowledged
            self._machine.transition(SessionState.SUBMITTED)
        if self._result_cache is not None:
            self._result_cache.store(acknowledged)
        logger.info("Attempt %s acknowledged by submission sink", submission.attempt_id)
        if self._on_released is not None:
            self._on_released(self)

    def _autosave_answer(self, question_id: str, option_id: str) -> None:
        if self._recorder is None:
            return
        try:
            self._recorder.save_answer(
                self.exam.id, self.attempt.candidate_id, question_id, option_id
            )
        except PortalError as e:
            logger.warning("Auto-save of answer for %s failed: %s", question_id, e)

    def snapshot(self, remaining: Optional[int] = None) -> SessionSnapshot:
        if remaining is None:
            remaining = self.timer.remaining()
        return SessionSnapshot(
            attempt_id=self.attempt.id,
            exam_id=self.exam.id,
            candidate_id=self.attempt.candidate_id,
            state=self.state,
            current_index=self.current_index,
            question_count=self.question_count,
            answers=dict(self.attempt.answers),
            flagged=sorted(self.flagged),
            violations_count=self.monitor.violations_count,
            warning_pending=self.monitor.warning_pending,
            remaining_seconds=remaining,
            started_at=self.attempt.started_at,
            result=self._result,
        )
