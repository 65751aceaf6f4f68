from enum import Enum
from datetime import datetime
from typing import Optional, Dict, List
from pydantic import BaseModel, Field

from portal.models.catalog import SanitizedExam
from portal.utils.state_machine import SessionState


class AttemptStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"


class Attempt(BaseModel):
    id: str
    exam_id: str
    candidate_id: str
    started_at: datetime
    answers: Dict[str, str] = Field(default_factory=dict)  # question id -> option id
    violations_count: int = 0
    status: AttemptStatus = AttemptStatus.IN_PROGRESS
    submitted_at: Optional[datetime] = None
    time_taken_seconds: Optional[int] = None
    score: Optional[int] = None
    auto_submitted: Optional[bool] = None

    @property
    def is_submitted(self) -> bool:
        return self.status == AttemptStatus.SUBMITTED


class Submission(BaseModel):
    """Finalize payload delivered to the submission sink"""

    attempt_id: str
    exam_id: str
    candidate_id: str
    answers: Dict[str, str] = Field(default_factory=dict)
    auto_submitted: bool = False
    violations_count: int = Field(default=0, ge=0)
    started_at: datetime
    submitted_at: datetime


class SubmissionResult(BaseModel):
    attempt_id: str
    exam_id: str
    candidate_id: str
    exam_title: str = ""
    answers: Dict[str, str] = Field(default_factory=dict)
    score: int
    total_marks: int
    pass_score: int
    passed: bool
    correct_count: int
    question_count: int
    time_taken_seconds: int
    auto_submitted: bool
    violations_count: int
    started_at: datetime
    submitted_at: datetime
    pending_sync: bool = False

    def submission(self) -> Submission:
        return Submission(
            attempt_id=self.attempt_id,
            exam_id=self.exam_id,
            candidate_id=self.candidate_id,
            answers=dict(self.answers),
            auto_submitted=self.auto_submitted,
            violations_count=self.violations_count,
            started_at=self.started_at,
            submitted_at=self.submitted_at,
        )


class SubmissionStatus(BaseModel):
    has_submitted: bool
    attempt_id: Optional[str] = None
    score: Optional[int] = None
    submitted_at: Optional[datetime] = None


class StartedAttempt(BaseModel):
    attempt: Attempt
    exam: SanitizedExam
    resumed: bool = False


class SessionSnapshot(BaseModel):
    """Everything the exam screen needs to render the current session"""

    attempt_id: str
    exam_id: str
    candidate_id: str
    state: SessionState
    current_index: int
    question_count: int
    answers: Dict[str, str]
    flagged: List[str]
    violations_count: int
    warning_pending: bool
    remaining_seconds: int
    started_at: datetime
    result: Optional[SubmissionResult] = None
