import logging
from typing import Iterable, Mapping

from portal.models.catalog import Exam, Question
from portal.models.exam_session import Submission, SubmissionResult
from portal.session.attempt_timer import elapsed_seconds

logger = logging.getLogger(__name__)


def _is_correct(question: Question, answers: Mapping[str, str]) -> bool:
    selected = answers.get(question.id)
    if selected is None:
        return False
    if selected not in question.option_ids():
        # Malformed answer: scored as incorrect, never raised
        logger.debug(
            "Answer %r for question %s is not one of its options",
            selected,
            question.id,
        )
        return False
    return selected == question.correct_option_id


def score(answers: Mapping[str, str], questions: Iterable[Question]) -> int:
    """Sum the marks of every correctly answered question.

    Unanswered questions, unknown question ids and unknown option ids all
    contribute 0. This function never raises for any answer map.
    """
    answers = answers or {}
    return sum(q.marks for q in questions if _is_correct(q, answers))


def count_correct(answers: Mapping[str, str], questions: Iterable[Question]) -> int:
    answers = answers or {}
    return sum(1 for q in questions if _is_correct(q, answers))


class ScoringService:
    """Turns a finalize payload into a scored result for one exam"""

    def build_result(
        self, exam: Exam, submission: Submission, started_at=None
    ) -> SubmissionResult:
        started_at = started_at or submission.started_at
        exam_score = score(submission.answers, exam.questions)
        total_marks = exam.total_marks
        return SubmissionResult(
            attempt_id=submission.attempt_id,
            exam_id=exam.id,
            candidate_id=submission.candidate_id,
            exam_title=exam.title,
            answers=dict(submission.answers),
            score=exam_score,
            total_marks=total_marks,
            pass_score=exam.pass_score,
            passed=self.is_passed(exam_score, total_marks, exam.pass_score),
            correct_count=count_correct(submission.answers, exam.questions),
            question_count=len(exam.questions),
            time_taken_seconds=elapsed_seconds(started_at, submission.submitted_at),
            auto_submitted=submission.auto_submitted,
            violations_count=submission.violations_count,
            started_at=started_at,
            submitted_at=submission.submitted_at,
        )

    @staticmethod
    def is_passed(exam_score: int, total_marks: int, pass_score: int) -> bool:
        """pass_score is a percentage of total marks"""
        if total_marks <= 0:
            return False
        return exam_score * 100 >= pass_score * total_marks
