import logging
import re
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from portal.models.exam_session import SubmissionResult

logger = logging.getLogger(__name__)

LAST_RESULT_KEY = "last_result"


class ResultCache:
    """Keeps the most recent result per candidate so the outcome screen can
    render even if fetching the canonical record fails.

    The submission sink owns the authoritative record.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    def _path(self, candidate_id: str) -> Path:
        safe_id = re.sub(r"[^A-Za-z0-9_.-]", "_", candidate_id) or "_"
        return self._directory / safe_id / f"{LAST_RESULT_KEY}.json"

    def store(self, result: SubmissionResult) -> None:
        path = self._path(result.candidate_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(result.model_dump_json(indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning(
                "Could not cache last result for %s: %s", result.candidate_id, exc
            )

    def load(self, candidate_id: str) -> Optional[SubmissionResult]:
        path = self._path(candidate_id)
        if not path.exists():
            return None
        try:
            return SubmissionResult.model_validate_json(
                path.read_text(encoding="utf-8")
            )
        except (OSError, ValidationError) as exc:
            logger.warning("Ignoring unreadable result cache %s: %s", path, exc)
            return None
