"""
Tutoring API endpoints.

Exposes session start / message / end, service health and usage analytics
over HTTP. The ``TutorService`` lives on ``app.state`` and is initialized and
shut down with the application lifespan.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from ..core.exceptions import SessionNotFoundError, ValidationError
from ..core.logging import ProcessingTimer, get_logger
from ..services import TutorService
from .logging_middleware import LoggingMiddleware

logger = get_logger(__name__)

router = APIRouter(tags=["Tutoring"])


# Pydantic models for API
class StartSessionRequest(BaseModel):
    """Request model for starting a tutoring session."""

    user_id: str = Field(..., description="Learner identifier")
    module: str = Field("general", description="Learning module")


class StartSessionResponse(BaseModel):
    session_id: str
    greeting: str
    suggested_topics: List[str] = Field(default_factory=list)
    avoid_topics: List[str] = Field(default_factory=list)


class MessageRequest(BaseModel):
    """Request model for one learner utterance."""

    text: str = Field(..., description="What the learner said")
    priority: Optional[str] = Field(
        None, description="Cost priority: quality, balanced or economy"
    )


class TurnResponse(BaseModel):
    session_id: str
    reply: str
    xp_delta: int
    cache_hit: bool
    difficulty: str
    encouragement_type: Optional[str] = None
    break_suggested: bool = False
    error_kind: Optional[str] = None
    fallback: Optional[Dict[str, Any]] = None
    retry_after_s: Optional[int] = None
    tier: Optional[str] = None
    replayed: List[str] = Field(default_factory=list)


class EndSessionResponse(BaseModel):
    summary: Dict[str, Any]


def get_tutor_service(request: Request) -> TutorService:
    """Get the service instance bound to the application."""
    return request.app.state.tutor_service  # type: ignore[no-any-return]


@router.post("/session", response_model=StartSessionResponse)
async def start_session(
    body: StartSessionRequest, service: TutorService = Depends(get_tutor_service)
) -> StartSessionResponse:
    """Start a session and return the personalized greeting."""
    try:
        started = await service.start_session(body.user_id, body.module)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())
    return StartSessionResponse(**started.to_dict())


@router.post("/session/{session_id}/message", response_model=TurnResponse)
async def send_message(
    session_id: str,
    body: MessageRequest,
    service: TutorService = Depends(get_tutor_service),
) -> TurnResponse:
    """Run one utterance through the tutoring pipeline."""
    try:
        with ProcessingTimer(logger, "turn", "tutor_api", tutor_session=session_id):
            result = await service.send_message(session_id, body.text, body.priority)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.to_dict())
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())
    return TurnResponse(**result.to_dict())


@router.post("/session/{session_id}/end", response_model=EndSessionResponse)
async def end_session(
    session_id: str, service: TutorService = Depends(get_tutor_service)
) -> EndSessionResponse:
    try:
        summary = await service.end_session(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.to_dict())
    return EndSessionResponse(summary=summary.to_dict())


@router.get("/health")
async def health(service: TutorService = Depends(get_tutor_service)) -> Dict[str, Any]:
    return await service.get_health()


@router.get("/usage")
async def usage(service: TutorService = Depends(get_tutor_service)) -> Dict[str, Any]:
    """Token, cost and cache analytics."""
    return service.get_usage()


def create_app(service: TutorService) -> FastAPI:
    """Build the FastAPI application around a tutor service."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await service.initialize()
        try:
            yield
        finally:
            await service.shutdown()

    app = FastAPI(title="Learning Companion API", lifespan=lifespan)
    app.state.tutor_service = service
    app.add_middleware(LoggingMiddleware)
    app.include_router(router)
    return app
