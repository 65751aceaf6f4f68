from datetime import datetime
from typing import Optional


class PortalError(Exception):
    """Base class for errors surfaced by the exam portal"""

    status_code = 400
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {"detail": self.message, "error": self.code}


class ExamNotFound(PortalError):
    status_code = 404

    def __init__(self, exam_id: str):
        super().__init__(f"Exam {exam_id} not found")
        self.exam_id = exam_id


class ExamNotAvailable(PortalError):
    def __init__(self, exam_id: str, status: str):
        super().__init__(f"Exam {exam_id} is not available (status {status})")
        self.exam_id = exam_id
        self.status = status


class AlreadySubmitted(PortalError):
    """Raised when a (exam, candidate) pair already has a submitted attempt"""

    def __init__(
        self,
        exam_id: str,
        candidate_id: str,
        attempt_id: Optional[str] = None,
        score: Optional[int] = None,
        submitted_at: Optional[datetime] = None,
    ):
        super().__init__("You have already submitted this exam")
        self.exam_id = exam_id
        self.candidate_id = candidate_id
        self.attempt_id = attempt_id
        self.score = score
        self.submitted_at = submitted_at

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            {
                "attempt_id": self.attempt_id,
                "score": self.score,
                "submitted_at": (
                    self.submitted_at.isoformat() if self.submitted_at else None
                ),
            }
        )
        return data


class AttemptNotFound(PortalError):
    status_code = 404

    def __init__(self, exam_id: str, candidate_id: str):
        super().__init__("No active attempt found")
        self.exam_id = exam_id
        self.candidate_id = candidate_id


class DeliveryTransient(PortalError):
    """Network or server failure while delivering a submission"""

    status_code = 503
    retryable = True


class SessionNotStarted(PortalError):
    status_code = 409

    def __init__(self):
        super().__init__("Exam session has not been started")


class InvalidNavigation(PortalError):
    def __init__(self, index: int, question_count: int):
        super().__init__(
            f"Question index {index} is out of range [0, {question_count})"
        )
        self.index = index


class UnknownQuestion(PortalError):
    def __init__(self, question_id: str):
        super().__init__(f"Question {question_id} is not part of this exam")
        self.question_id = question_id


class ConfirmationRequired(PortalError):
    def __init__(self):
        super().__init__("Submitting the exam requires confirmation")


class FinishNotAvailable(PortalError):
    def __init__(self):
        super().__init__(
            "Finish is only available from the last question or the palette"
        )
