import json
import logging
from pathlib import Path
from typing import Optional, List, Dict, Iterable

from portal.models.catalog import Exam, SanitizedExam
from portal.utils.errors import ExamNotFound

logger = logging.getLogger(__name__)


class ExamService:
    """Read-only exam catalog.

    Exams and their question sets are immutable while attempts run; the
    catalog is loaded once from a JSON file of the form
    ``{"exams": [ {..exam.., "questions": [..]} ]}``.
    """

    def __init__(
        self,
        catalog_path: Optional[Path] = None,
        exams: Optional[Iterable[Exam]] = None,
    ):
        self.catalog_path = Path(catalog_path) if catalog_path else None
        self.exams: Dict[str, Exam] = {}
        if exams is not None:
            for exam in exams:
                self.exams[exam.id] = exam
        elif self.catalog_path is not None:
            self._load_catalog()

    def _load_catalog(self):
        """Load the exam catalog JSON file"""
        with open(self.catalog_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        for raw in data.get("exams", []):
            exam = Exam.model_validate(raw)
            self.exams[exam.id] = exam
        logger.info("Loaded %d exams from %s", len(self.exams), self.catalog_path)

    def list_exams(self, startable_only: bool = False) -> List[Exam]:
        """Get all exams, optionally only those a candidate may start"""
        exams = list(self.exams.values())
        if startable_only:
            exams = [exam for exam in exams if exam.is_startable]
        return exams

    def find_exam(self, exam_id: str) -> Optional[Exam]:
        return self.exams.get(exam_id)

    def get_exam(self, exam_id: str) -> Exam:
        """Get an exam by ID"""
        exam = self.exams.get(exam_id)
        if exam is None:
            raise ExamNotFound(exam_id)
        return exam

    def get_sanitized_exam(self, exam_id: str) -> SanitizedExam:
        return self.get_exam(exam_id).sanitized()
