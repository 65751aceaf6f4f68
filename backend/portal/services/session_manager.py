import logging
import threading
from typing import Dict, Optional, Tuple

from portal.config import Settings
from portal.models.exam_session import StartedAttempt
from portal.services.attempt_service import AttemptService
from portal.services.exam_service import ExamService
from portal.services.submission_sink import SubmissionSink
from portal.session.attempt_timer import Clock, utcnow
from portal.session.exam_session import ExamSession, FinalizeOutcome
from portal.session.result_cache import ResultCache
from portal.utils.errors import AlreadySubmitted, AttemptNotFound

logger = logging.getLogger(__name__)


class SessionManager:
    """Hosts the live exam session of every (exam, candidate) pair.

    A session is released once the submission sink acknowledges it; later
    requests for the pair are answered from the attempt store.
    """

    def __init__(
        self,
        exam_service: ExamService,
        attempt_service: AttemptService,
        sink: SubmissionSink,
        result_cache: Optional[ResultCache] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
        run_timers: bool = True,
    ):
        self.exam_service = exam_service
        self.attempt_service = attempt_service
        self.sink = sink
        self.result_cache = result_cache
        self.settings = settings or Settings()
        self._clock = clock
        self._run_timers = run_timers
        self._lock = threading.Lock()
        self.sessions: Dict[Tuple[str, str], ExamSession] = {}

    async def start(self, exam_id: str, candidate_id: str) -> Tuple[StartedAttempt, ExamSession]:
        """Start or resume the candidate's session.

        Gate errors come from the attempt store before any session exists.
        """
        started = self.attempt_service.start_attempt(exam_id, candidate_id)
        key = (exam_id, candidate_id)

        with self._lock:
            session = self.sessions.get(key)
            if session is None or session.attempt.id != started.attempt.id:
                session = self._build_session(started)
                self.sessions[key] = session
        session.start(run_timer=self._run_timers)

        # An attempt resumed after its deadline is submitted right away
        await session.tick()
        return started, session

    def _build_session(self, started: StartedAttempt) -> ExamSession:
        exam = self.exam_service.get_exam(started.attempt.exam_id)
        return ExamSession(
            exam,
            started.attempt,
            self.sink,
            clock=self._clock,
            recorder=self.attempt_service,
            result_cache=self.result_cache,
            scoring_service=self.attempt_service.scoring_service,
            tick_seconds=self.settings.timer_tick_seconds,
            delivery_max_attempts=self.settings.delivery_max_attempts,
            delivery_backoff_seconds=self.settings.delivery_backoff_seconds,
            on_released=self._release,
        )

    def _release(self, session: ExamSession) -> None:
        key = (session.exam.id, session.attempt.candidate_id)
        self.attempt_service.mark_acknowledged(session.result)
        with self._lock:
            if self.sessions.get(key) is session:
                del self.sessions[key]
        logger.info("Released session for attempt %s", session.attempt.id)

    def find(self, exam_id: str, candidate_id: str) -> Optional[ExamSession]:
        with self._lock:
            return self.sessions.get((exam_id, candidate_id))

    async def get(self, exam_id: str, candidate_id: str) -> ExamSession:
        """Return the live session after applying any pending timer expiry"""
        session = self.find(exam_id, candidate_id)
        if session is None:
            status = self.attempt_service.check_submission(exam_id, candidate_id)
            if status.has_submitted:
                raise AlreadySubmitted(
                    exam_id,
                    candidate_id,
                    attempt_id=status.attempt_id,
                    score=status.score,
                    submitted_at=status.submitted_at,
                )
            raise AttemptNotFound(exam_id, candidate_id)
        await session.tick()
        return session

    async def finish(
        self, exam_id: str, candidate_id: str, confirmed: bool, from_palette: bool = False
    ) -> FinalizeOutcome:
        session = self.find(exam_id, candidate_id)
        if session is None:
            return self._released_outcome(exam_id, candidate_id)
        await session.tick()
        return await session.finish(confirmed, from_palette)

    async def exit(self, exam_id: str, candidate_id: str) -> FinalizeOutcome:
        session = self.find(exam_id, candidate_id)
        if session is None:
            return self._released_outcome(exam_id, candidate_id)
        await session.tick()
        return await session.exit()

    def _released_outcome(self, exam_id: str, candidate_id: str) -> FinalizeOutcome:
        """Repeat of a finish whose session was already acknowledged and released"""
        status = self.attempt_service.check_submission(exam_id, candidate_id)
        result = self.attempt_service.get_result(status.attempt_id) if status.has_submitted else None
        if result is None:
            raise AttemptNotFound(exam_id, candidate_id)
        return FinalizeOutcome(result=result, first=False, acknowledged=True)

    def shutdown(self) -> None:
        with self._lock:
            sessions = list(self.sessions.values())
        for session in sessions:
            session.timer.stop()
            session.monitor.stop()
        logger.info("Stopped %d exam session(s)", len(sessions))
