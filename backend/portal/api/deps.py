import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from portal.config import Settings
from portal.services.attempt_service import AttemptService
from portal.services.exam_service import ExamService
from portal.services.session_manager import SessionManager
from portal.services.submission_sink import HttpSubmissionSink, StoreSubmissionSink
from portal.session.attempt_timer import Clock, utcnow
from portal.session.result_cache import ResultCache

logger = logging.getLogger(__name__)


@dataclass
class Portal:
    """Services shared by the API routes"""

    settings: Settings
    exam_service: ExamService
    attempt_service: AttemptService
    session_manager: SessionManager
    result_cache: ResultCache


def build_portal(
    settings: Settings,
    exam_service: Optional[ExamService] = None,
    clock: Clock = utcnow,
    run_timers: bool = True,
) -> Portal:
    exam_service = exam_service or ExamService(settings.catalog_path)
    attempt_service = AttemptService(exam_service, clock=clock)
    result_cache = ResultCache(settings.result_cache_dir)

    if settings.submission_sink_url:
        logger.info("Delivering submissions to %s", settings.submission_sink_url)
        sink = HttpSubmissionSink(
            settings.submission_sink_url, timeout=settings.submission_sink_timeout
        )
    else:
        sink = StoreSubmissionSink(attempt_service)

    session_manager = SessionManager(
        exam_service,
        attempt_service,
        sink,
        result_cache=result_cache,
        settings=settings,
        clock=clock,
        run_timers=run_timers,
    )
    return Portal(
        settings=settings,
        exam_service=exam_service,
        attempt_service=attempt_service,
        session_manager=session_manager,
        result_cache=result_cache,
    )


def get_portal(request: Request) -> Portal:
    return request.app.state.portal


def get_candidate_id(x_candidate_id: Optional[str] = Header(default=None)) -> str:
    """Candidate identity is established upstream and forwarded as a header"""
    if not x_candidate_id or not x_candidate_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Candidate-Id header")
    return x_candidate_id.strip()


def require_admin(
    candidate_id: str = Depends(get_candidate_id),
    x_role: Optional[str] = Header(default=None),
) -> str:
    """Administrator views need the upstream-asserted admin role"""
    if (x_role or "").strip().lower() != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return candidate_id
