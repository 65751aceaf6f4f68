from datetime import datetime, timedelta, timezone

import pytest

from portal.models.catalog import Exam, ExamStatus, Option, Question
from portal.services.attempt_service import AttemptService
from portal.services.exam_service import ExamService
from portal.services.submission_sink import StoreSubmissionSink
from portal.utils.errors import DeliveryTransient


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class CountingSink:
    """Wraps a sink and records every delivery it receives"""

    def __init__(self, inner):
        self.inner = inner
        self.deliveries = []

    async def deliver(self, submission):
        self.deliveries.append(submission)
        return await self.inner.deliver(submission)


class FlakySink(CountingSink):
    """Fails with a transient error for the first ``failures`` deliveries"""

    def __init__(self, inner, failures):
        super().__init__(inner)
        self.failures = failures

    async def deliver(self, submission):
        self.deliveries.append(submission)
        if self.failures > 0:
            self.failures -= 1
            raise DeliveryTransient("connection reset")
        return await self.inner.deliver(submission)


def _question(question_id, marks, correct="a"):
    return Question(
        id=question_id,
        text=f"Question {question_id}",
        options=[Option(id=o, text=o.upper()) for o in ("a", "b", "c", "d")],
        correct_option_id=correct,
        marks=marks,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def exam():
    return Exam(
        id="exam-1",
        title="Two Question Exam",
        code="TQE1",
        duration_mins=1,
        pass_score=60,
        status=ExamStatus.ONGOING,
        questions=[_question("q1", 5, "a"), _question("q2", 3, "c")],
    )


@pytest.fixture
def closed_exam():
    return Exam(
        id="exam-closed",
        title="Closed Exam",
        code="CLS1",
        duration_mins=10,
        status=ExamStatus.CLOSED,
        questions=[_question("c1", 2)],
    )


@pytest.fixture
def exam_service(exam, closed_exam):
    return ExamService(exams=[exam, closed_exam])


@pytest.fixture
def attempt_service(exam_service, clock):
    return AttemptService(exam_service, clock=clock)


@pytest.fixture
def sink(attempt_service):
    return CountingSink(StoreSubmissionSink(attempt_service))
