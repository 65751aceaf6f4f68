from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field, model_validator


class ExamStatus(str, Enum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    ONGOING = "ONGOING"
    CLOSED = "CLOSED"


STARTABLE_STATUSES = {ExamStatus.SCHEDULED, ExamStatus.ONGOING}


class Option(BaseModel):
    id: str = Field(min_length=1)
    text: str


class SanitizedQuestion(BaseModel):
    """Question as served to candidates, without the answer key"""

    id: str
    text: str
    description: Optional[str] = None
    options: List[Option]
    marks: int


class Question(SanitizedQuestion):
    marks: int = Field(gt=0)
    correct_option_id: str
    explanation: Optional[str] = None

    @model_validator(mode="after")
    def _check_options(self) -> "Question":
        option_ids = [option.id for option in self.options]
        if len(set(option_ids)) != len(option_ids):
            raise ValueError(f"Question {self.id} has duplicate option ids")
        if self.correct_option_id not in option_ids:
            raise ValueError(
                f"Question {self.id}: correct option {self.correct_option_id!r} "
                "is not one of its options"
            )
        return self

    def option_ids(self) -> List[str]:
        return [option.id for option in self.options]

    def sanitized(self) -> SanitizedQuestion:
        return SanitizedQuestion(
            id=self.id,
            text=self.text,
            description=self.description,
            options=[option.model_copy() for option in self.options],
            marks=self.marks,
        )


class SanitizedExam(BaseModel):
    id: str
    title: str
    code: str
    department: str = ""
    instructor: str = ""
    duration_mins: int
    pass_score: int
    status: ExamStatus
    total_marks: int
    questions: List[SanitizedQuestion]


class Exam(BaseModel):
    id: str
    title: str
    code: str
    department: str = ""
    instructor: str = ""
    duration_mins: int = Field(gt=0)
    pass_score: int = Field(default=60, ge=0, le=100)
    status: ExamStatus = ExamStatus.DRAFT
    questions: List[Question] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_questions(self) -> "Exam":
        question_ids = self.question_ids()
        if len(set(question_ids)) != len(question_ids):
            raise ValueError(f"Exam {self.id} has duplicate question ids")
        return self

    @computed_field
    @property
    def total_marks(self) -> int:
        """Sum of question marks, always derived from the current question set"""
        return sum(question.marks for question in self.questions)

    @property
    def is_startable(self) -> bool:
        return self.status in STARTABLE_STATUSES

    @property
    def duration_seconds(self) -> int:
        return self.duration_mins * 60

    def question_ids(self) -> List[str]:
        return [question.id for question in self.questions]

    def get_question(self, question_id: str) -> Optional[Question]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def sanitized(self) -> SanitizedExam:
        return SanitizedExam(
            id=self.id,
            title=self.title,
            code=self.code,
            department=self.department,
            instructor=self.instructor,
            duration_mins=self.duration_mins,
            pass_score=self.pass_score,
            status=self.status,
            total_marks=self.total_marks,
            questions=[question.sanitized() for question in self.questions],
        )
