from enum import Enum
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from portal.api.deps import Portal, get_candidate_id, get_portal
from portal.session.exam_session import FinalizeOutcome

router = APIRouter()


class AnswerRequest(BaseModel):
    question_id: str
    option_id: str


class NavigateRequest(BaseModel):
    index: int


class IntegrityEventType(str, Enum):
    VISIBILITY = "visibility"
    BLUR = "blur"


class IntegrityEventRequest(BaseModel):
    event: IntegrityEventType
    hidden: bool


class FinishRequest(BaseModel):
    confirmed: bool = False
    from_palette: bool = False


def _outcome(outcome: FinalizeOutcome) -> dict:
    return {
        "result": outcome.result,
        "first": outcome.first,
        "acknowledged": outcome.acknowledged,
    }


@router.get("")
async def list_exams(portal: Portal = Depends(get_portal)):
    """Exams a candidate may start"""
    exams = portal.exam_service.list_exams(startable_only=True)
    return {"exams": [exam.sanitized() for exam in exams]}


@router.get("/{exam_id}")
async def get_exam(exam_id: str, portal: Portal = Depends(get_portal)):
    """Get an exam without its answer key"""
    return portal.exam_service.get_sanitized_exam(exam_id)


@router.post("/{exam_id}/start")
async def start_attempt(
    exam_id: str,
    candidate_id: str = Depends(get_candidate_id),
    portal: Portal = Depends(get_portal),
):
    """Start a new attempt or resume the in-progress one"""
    started, session = await portal.session_manager.start(exam_id, candidate_id)
    return {
        "attempt": started.attempt,
        "exam": started.exam,
        "resumed": started.resumed,
        "remaining_seconds": session.timer.remaining(),
        "session": session.snapshot(),
    }


@router.get("/{exam_id}/session")
async def get_session(
    exam_id: str,
    candidate_id: str = Depends(get_candidate_id),
    portal: Portal = Depends(get_portal),
):
    session = await portal.session_manager.get(exam_id, candidate_id)
    return session.snapshot()


@router.put("/{exam_id}/answers")
async def record_answer(
    exam_id: str,
    request: AnswerRequest,
    candidate_id: str = Depends(get_candidate_id),
    portal: Portal = Depends(get_portal),
):
    session = await portal.session_manager.get(exam_id, candidate_id)
    session.record_answer(request.question_id, request.option_id)
    return {"message": "Answer saved"}


@router.post("/{exam_id}/flags/{question_id}")
async def toggle_flag(
    exam_id: str,
    question_id: str,
    candidate_id: str = Depends(get_candidate_id),
    portal: Portal = Depends(get_portal),
):
    session = await portal.session_manager.get(exam_id, candidate_id)
    flagged = session.toggle_flag(question_id)
    return {"question_id": question_id, "flagged": flagged}


@router.post("/{exam_id}/navigate")
async def navigate(
    exam_id: str,
    request: NavigateRequest,
    candidate_id: str = Depends(get_candidate_id),
    portal: Portal = Depends(get_portal),
):
    session = await portal.session_manager.get(exam_id, candidate_id)
    return {"current_index": session.navigate(request.index)}


@router.post("/{exam_id}/integrity")
async def report_integrity_event(
    exam_id: str,
    request: IntegrityEventRequest,
    candidate_id: str = Depends(get_candidate_id),
    portal: Portal = Depends(get_portal),
):
    """Visibility and focus transitions forwarded by the exam screen"""
    session = await portal.session_manager.get(exam_id, candidate_id)
    if request.event == IntegrityEventType.VISIBILITY:
        event = session.report_visibility(request.hidden)
    else:
        event = session.report_blur(request.hidden)
    return {
        "violation": event is not None,
        "violations_count": session.monitor.violations_count,
        "warning_pending": session.monitor.warning_pending,
    }


@router.post("/{exam_id}/integrity/ack")
async def acknowledge_warning(
    exam_id: str,
    candidate_id: str = Depends(get_candidate_id),
    portal: Portal = Depends(get_portal),
):
    session = portal.session_manager.find(exam_id, candidate_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    session.acknowledge_warning()
    return {"violations_count": session.monitor.violations_count}


@router.post("/{exam_id}/submit")
async def submit_exam(
    exam_id: str,
    request: FinishRequest,
    candidate_id: str = Depends(get_candidate_id),
    portal: Portal = Depends(get_portal),
):
    """Candidate-initiated finish, requires confirmation"""
    outcome = await portal.session_manager.finish(
        exam_id, candidate_id, request.confirmed, request.from_palette
    )
    return _outcome(outcome)


@router.post("/{exam_id}/exit")
async def exit_exam(
    exam_id: str,
    candidate_id: str = Depends(get_candidate_id),
    portal: Portal = Depends(get_portal),
):
    """Leaving the exam submits the current answers"""
    outcome = await portal.session_manager.exit(exam_id, candidate_id)
    return _outcome(outcome)
