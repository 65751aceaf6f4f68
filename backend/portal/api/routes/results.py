from typing import Optional
from fastapi import APIRouter, Depends, HTTPException

from portal.api.deps import Portal, get_candidate_id, get_portal, require_admin
from portal.models.exam_session import Submission

router = APIRouter()


@router.post("", status_code=201)
async def record_submission(
    submission: Submission,
    candidate_id: str = Depends(get_candidate_id),
    portal: Portal = Depends(get_portal),
):
    """Submission sink endpoint: one terminal result per (exam, candidate)"""
    if submission.candidate_id != candidate_id:
        raise HTTPException(status_code=403, detail="Not authorized")
    return portal.attempt_service.record_submission(submission)


@router.get("/check/{exam_id}")
async def check_submission(
    exam_id: str,
    candidate_id: str = Depends(get_candidate_id),
    portal: Portal = Depends(get_portal),
):
    return portal.attempt_service.check_submission(exam_id, candidate_id)


@router.get("/last")
async def last_result(
    candidate_id: str = Depends(get_candidate_id),
    portal: Portal = Depends(get_portal),
):
    """Cached outcome for the result screen, not the canonical record"""
    result = portal.result_cache.load(candidate_id)
    if result is None:
        raise HTTPException(status_code=404, detail="No cached result")
    return result


@router.get("/my")
async def my_results(
    candidate_id: str = Depends(get_candidate_id),
    portal: Portal = Depends(get_portal),
):
    return portal.attempt_service.results_for_candidate(candidate_id)


@router.get("/exam/{exam_id}")
async def exam_results(
    exam_id: str,
    admin_id: str = Depends(require_admin),
    portal: Portal = Depends(get_portal),
):
    """Admin-facing: all results for an exam, best score first"""
    portal.exam_service.get_exam(exam_id)
    return portal.attempt_service.list_results(exam_id)


@router.get("/stats/overview")
async def stats_overview(
    admin_id: str = Depends(require_admin),
    portal: Portal = Depends(get_portal),
):
    """Admin-facing"""
    return portal.attempt_service.stats()


@router.get("")
async def all_results(
    exam_id: Optional[str] = None,
    admin_id: str = Depends(require_admin),
    portal: Portal = Depends(get_portal),
):
    """Admin-facing: every submitted result, optionally for one exam"""
    return portal.attempt_service.list_results(exam_id)


@router.get("/{attempt_id}")
async def get_result(
    attempt_id: str,
    candidate_id: str = Depends(get_candidate_id),
    portal: Portal = Depends(get_portal),
):
    result = portal.attempt_service.get_result(attempt_id)
    if not result:
        raise HTTPException(status_code=404, detail="Result not found")
    if result.candidate_id != candidate_id:
        raise HTTPException(status_code=403, detail="Not authorized")
    return result
