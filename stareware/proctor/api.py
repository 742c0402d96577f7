"""
Proctoring API - FastAPI endpoints for proctored test attempts

Endpoints:
- POST /api/proctor/start - Start a proctored attempt on a live test
- POST /api/proctor/{session_id}/tick - Advance the countdown
- POST /api/proctor/{session_id}/face - Report a face-presence sample
- POST /api/proctor/{session_id}/visibility - Report a visibility change
- POST /api/proctor/{session_id}/fullscreen - Report a fullscreen change
- POST /api/proctor/{session_id}/before-unload - Report a page unload attempt
- POST /api/proctor/{session_id}/answer - Record an answer
- POST /api/proctor/{session_id}/navigate - Jump to a question
- POST /api/proctor/{session_id}/acknowledge - Dismiss the active warning
- POST /api/proctor/{session_id}/submit - Submit the attempt
- GET /api/proctor/{session_id}/status - Get session status
- GET /api/proctor/{session_id}/question/{index} - Get a question
- GET /api/proctor/{session_id}/result - Get the final result
"""

import logging
from contextlib import contextmanager
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, model_validator

from .errors import (
    InvalidSelectionError,
    InvalidStateError,
    InvalidTestError,
    TestNotFoundError,
    TestNotLiveError,
)
from .models import Result
from .registry import SessionRegistry
from .session import ProctoringSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/proctor", tags=["Proctoring"])


# ============== Request/Response Models ==============

class StartSessionRequest(BaseModel):
    """Request to start a proctored attempt"""
    test_id: str = Field(..., description="ID of the test to attempt")
    candidate_id: Optional[str] = Field(None, description="ID of the candidate")
    fullscreen_granted: bool = Field(True, description="Whether the browser entered fullscreen")
    time_limit_seconds: Optional[int] = Field(None, ge=1)
    face_grace_seconds: Optional[float] = Field(None, ge=0)
    max_warnings: Optional[int] = Field(None, ge=1)
    require_acknowledgment: Optional[bool] = None
    strict_mode: Optional[bool] = None


class TickRequest(BaseModel):
    elapsed_seconds: float = Field(1, ge=0)


class FacePresenceRequest(BaseModel):
    """Face-presence sample: a boolean or a raw detector confidence"""
    present: Optional[bool] = None
    confidence: Optional[float] = Field(None, ge=0, le=1)

    @model_validator(mode="after")
    def validate_signal(self) -> "FacePresenceRequest":
        if self.present is None and self.confidence is None:
            raise ValueError("Either 'present' or 'confidence' is required")
        return self


class VisibilityRequest(BaseModel):
    hidden: bool


class FullscreenRequest(BaseModel):
    is_fullscreen: bool


class AnswerRequest(BaseModel):
    question_index: int = Field(..., ge=0)
    selection: Optional[Union[int, List[int]]] = Field(None, description="Option index or indices; null clears")


class NavigateRequest(BaseModel):
    question_index: int = Field(..., ge=0)


class NoticeResponse(BaseModel):
    kind: str
    reason: str
    message: str
    violation_count: int
    requires_acknowledgment: bool


class SessionStatusResponse(BaseModel):
    """Current session status"""
    session_id: str
    test_id: Optional[str]
    phase: str
    current_question_index: int
    total_questions: int
    answered_count: int
    answered_questions: List[int]
    remaining_seconds: int
    remaining_display: str
    face_present: bool
    violation_count: int
    max_warnings: int
    notice: Optional[NoticeResponse] = None
    completion_reason: Optional[str] = None
    persistence_pending: bool = False
    persistence_error: Optional[str] = None


class QuestionOptionResponse(BaseModel):
    id: str
    text: str


class QuestionResponse(BaseModel):
    index: int
    total: int
    id: str
    text: str
    type: str
    marks: int
    options: List[QuestionOptionResponse]
    saved_answer: Optional[Union[int, List[int]]] = None


# ============== Helpers ==============

def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def _get_session(registry: SessionRegistry, session_id: str) -> ProctoringSession:
    session = registry.get(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@contextmanager
def _session_errors():
    """Translate session errors into HTTP errors"""
    try:
        yield
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidSelectionError as e:
        raise HTTPException(status_code=422, detail=str(e))


def _status(session: ProctoringSession) -> SessionStatusResponse:
    return SessionStatusResponse(**session.status())


# ============== API Endpoints ==============

@router.post("/start", response_model=SessionStatusResponse)
async def start_session(request: StartSessionRequest, registry: SessionRegistry = Depends(get_registry)):
    """
    Start a proctored attempt.

    Fetches the test (which must be live), starts the countdown and
    begins accepting proctoring signals.
    """
    overrides = request.model_dump(
        include={"time_limit_seconds", "face_grace_seconds", "max_warnings",
                 "require_acknowledgment", "strict_mode"},
        exclude_none=True,
    )
    try:
        session = registry.create_session(
            test_id=request.test_id,
            candidate_id=request.candidate_id,
            fullscreen_granted=request.fullscreen_granted,
            **overrides
        )
    except TestNotFoundError:
        raise HTTPException(status_code=404, detail="Test not found")
    except TestNotLiveError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidTestError as e:
        logger.error(f"Failed to start proctoring session: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    return _status(session)


@router.post("/{session_id}/tick", response_model=SessionStatusResponse)
async def tick(session_id: str, request: TickRequest, registry: SessionRegistry = Depends(get_registry)):
    """Advance the countdown (when the server is not ticking itself)"""
    session = _get_session(registry, session_id)
    session.tick(request.elapsed_seconds)
    return _status(session)


@router.post("/{session_id}/face", response_model=SessionStatusResponse)
async def report_face(session_id: str, request: FacePresenceRequest, registry: SessionRegistry = Depends(get_registry)):
    """Report one face-presence sample from the vision model"""
    session = _get_session(registry, session_id)
    if request.present is not None:
        session.report_face_presence(request.present)
    else:
        session.report_face_confidence(request.confidence)
    return _status(session)


@router.post("/{session_id}/visibility", response_model=SessionStatusResponse)
async def report_visibility(session_id: str, request: VisibilityRequest, registry: SessionRegistry = Depends(get_registry)):
    """
    Record a page visibility change.

    Called when the frontend detects that the candidate
    switched away from (or back to) the test tab.
    """
    session = _get_session(registry, session_id)
    session.report_visibility_change(request.hidden)
    return _status(session)


@router.post("/{session_id}/fullscreen", response_model=SessionStatusResponse)
async def report_fullscreen(session_id: str, request: FullscreenRequest, registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(registry, session_id)
    session.report_fullscreen_change(request.is_fullscreen)
    return _status(session)


@router.post("/{session_id}/before-unload", response_model=SessionStatusResponse)
async def report_before_unload(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(registry, session_id)
    session.report_before_unload()
    return _status(session)


@router.post("/{session_id}/answer", response_model=SessionStatusResponse)
async def select_answer(session_id: str, request: AnswerRequest, registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(registry, session_id)
    with _session_errors():
        session.select_answer(request.question_index, request.selection)
    return _status(session)


@router.post("/{session_id}/navigate", response_model=SessionStatusResponse)
async def navigate(session_id: str, request: NavigateRequest, registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(registry, session_id)
    with _session_errors():
        session.navigate_to(request.question_index)
    return _status(session)


@router.post("/{session_id}/acknowledge", response_model=SessionStatusResponse)
async def acknowledge_notice(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Dismiss the active warning notice"""
    session = _get_session(registry, session_id)
    session.acknowledge_notice()
    return _status(session)


@router.post("/{session_id}/submit", response_model=Result)
async def submit(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """
    Submit the attempt and get the final result.

    Submitting an already completed attempt returns the existing result.
    """
    session = _get_session(registry, session_id)
    with _session_errors():
        result = session.submit()
    if result is None:
        raise HTTPException(status_code=409, detail="Session has not started")
    return result


@router.get("/{session_id}/status", response_model=SessionStatusResponse)
async def get_session_status(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """
    Get current status of a proctoring session.
    """
    return _status(_get_session(registry, session_id))


@router.get("/{session_id}/question/{index}", response_model=QuestionResponse)
async def get_question(session_id: str, index: int, registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(registry, session_id)
    try:
        return session.question_view(index)
    except InvalidSelectionError:
        raise HTTPException(status_code=404, detail="Question not found")
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/{session_id}/result", response_model=Result)
async def get_result(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(registry, session_id)
    if session.result is None:
        raise HTTPException(status_code=409, detail="Session is not completed")
    return session.result


# ============== Health Check ==============

@router.get("/health")
async def health_check(registry: SessionRegistry = Depends(get_registry)):
    """Health check for proctoring module"""
    return {
        "status": "healthy",
        "active_sessions": len(registry.active_sessions()),
        "module": "proctoring"
    }
