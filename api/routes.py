"""FastAPI routes for interview session control."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Set

from fastapi import APIRouter, Depends, Header, Request, Response
from starlette.concurrency import run_in_threadpool

from api.schemas import AnswerReq, SessionResp, SessionSummary, StartReq, TranscriptionResp, TurnResp, UsageResp
from config import GATEWAY_TARGETS, TRANSCRIBE_KEY, load_config, resolve_routes
from config.settings import settings
from errors import AuthenticationError, InvalidTransitionError, PayloadTooLargeError, SessionNotFoundError
from interview_session import InterviewEngine
from prompt_gateway import PromptGateway
from retry_client import RetryOptions
from storage import ReportRecord, SessionDetails, SessionStore, UsageStore, UserStats
from transcription import Transcriber
from usage_guard import RateLimiter, UsageGuard, session_limit_warning


router = APIRouter(prefix="/api")

_IN_FLIGHT: Set[str] = set()
_IN_FLIGHT_GUARD = threading.Lock()
_RATE_LIMITER: Optional[RateLimiter] = None


@contextmanager
def _session_lock(session_id: str) -> Iterator[None]:  # One in-flight mutation per session
    with _IN_FLIGHT_GUARD:
        if session_id in _IN_FLIGHT:
            raise InvalidTransitionError("Another request for this session is still being processed")
        _IN_FLIGHT.add(session_id)
    try:
        yield
    finally:
        with _IN_FLIGHT_GUARD:
            _IN_FLIGHT.discard(session_id)


def get_identity(request: Request, x_user_id: Optional[str] = Header(default=None)) -> str:
    if x_user_id and x_user_id.strip():
        return x_user_id.strip()
    if settings.REQUIRE_AUTH:
        raise AuthenticationError("Authentication required")
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


def get_guard() -> UsageGuard:
    return UsageGuard(UsageStore(settings.DB_PATH), cfg=settings)


def get_rate_limiter() -> RateLimiter:
    global _RATE_LIMITER
    if _RATE_LIMITER is None:
        _RATE_LIMITER = RateLimiter.from_settings(settings)
    return _RATE_LIMITER


def enforce_rate_limit(
    identity: str = Depends(get_identity),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> str:
    limiter.hit(identity)
    return identity


def get_engine(guard: UsageGuard = Depends(get_guard)) -> InterviewEngine:
    app_config = load_config(Path(settings.APP_CONFIG_PATH))
    routes = resolve_routes(app_config, GATEWAY_TARGETS)
    gateway = PromptGateway(
        routes,
        guard,
        retry=RetryOptions.from_settings(settings),
        flow=app_config.flow,
    )
    return InterviewEngine(SessionStore(settings.DB_PATH), gateway, guard, flow=app_config.flow, settings=settings)


def get_transcriber(guard: UsageGuard = Depends(get_guard)) -> Transcriber:
    app_config = load_config(Path(settings.APP_CONFIG_PATH))
    route = resolve_routes(app_config, [TRANSCRIBE_KEY])[TRANSCRIBE_KEY]
    return Transcriber(route, guard, retry=RetryOptions.from_settings(settings))


def _owned(engine: InterviewEngine, session_id: str, identity: str) -> SessionDetails:
    details = engine.get_session(session_id)
    if details.session.identity != identity:
        raise SessionNotFoundError(f"Session '{session_id}' not found")
    return details


async def _read_audio(request: Request, max_bytes: int) -> bytes:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise PayloadTooLargeError(f"Audio exceeds {max_bytes} bytes")
    audio = bytearray()
    async for chunk in request.stream():
        audio.extend(chunk)
        if len(audio) > max_bytes:
            raise PayloadTooLargeError(f"Audio exceeds {max_bytes} bytes")
    return bytes(audio)


@router.post("/sessions", response_model=TurnResp, status_code=201)
def start_session(
    req: StartReq,
    request: Request,
    identity: str = Depends(enforce_rate_limit),
    engine: InterviewEngine = Depends(get_engine),
) -> TurnResp:
    user_id = request.headers.get("x-user-id") or None
    result = engine.start(req.job_description, identity=identity, user_id=user_id)
    return TurnResp.from_result(result)


@router.post("/sessions/{session_id}/answers", response_model=TurnResp)
def submit_answer(
    session_id: str,
    req: AnswerReq,
    identity: str = Depends(enforce_rate_limit),
    engine: InterviewEngine = Depends(get_engine),
) -> TurnResp:
    _owned(engine, session_id, identity)
    with _session_lock(session_id):
        result = engine.submit_answer(session_id, req.answer)
    return TurnResp.from_result(result)


@router.get("/sessions", response_model=List[SessionSummary])
def list_sessions(
    limit: Optional[int] = None,
    identity: str = Depends(get_identity),
    engine: InterviewEngine = Depends(get_engine),
) -> List[SessionSummary]:
    return [SessionSummary.from_record(item) for item in engine.list_sessions(identity, limit=limit)]


@router.get("/sessions/{session_id}", response_model=SessionResp)
def get_session(
    session_id: str,
    identity: str = Depends(get_identity),
    engine: InterviewEngine = Depends(get_engine),
) -> SessionResp:
    details = _owned(engine, session_id, identity)
    return SessionResp.from_details(details, engine.current_turn(details))


@router.delete("/sessions/{session_id}", status_code=204)
def delete_session(
    session_id: str,
    identity: str = Depends(enforce_rate_limit),
    engine: InterviewEngine = Depends(get_engine),
) -> Response:
    try:
        _owned(engine, session_id, identity)
    except SessionNotFoundError:
        return Response(status_code=204)
    with _session_lock(session_id):
        engine.delete_session(session_id)
    return Response(status_code=204)


@router.post("/sessions/{session_id}/abandon", response_model=TurnResp)
def abandon_session(
    session_id: str,
    identity: str = Depends(enforce_rate_limit),
    engine: InterviewEngine = Depends(get_engine),
) -> TurnResp:
    _owned(engine, session_id, identity)
    with _session_lock(session_id):
        result = engine.abandon(session_id)
    return TurnResp.from_result(result)


@router.post("/sessions/{session_id}/report", response_model=ReportRecord, status_code=201)
def regenerate_report(
    session_id: str,
    identity: str = Depends(enforce_rate_limit),
    engine: InterviewEngine = Depends(get_engine),
) -> ReportRecord:
    _owned(engine, session_id, identity)
    with _session_lock(session_id):
        return engine.regenerate_report(session_id)


@router.get("/usage", response_model=UsageResp)
def usage_status(
    identity: str = Depends(get_identity),
    guard: UsageGuard = Depends(get_guard),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> UsageResp:
    status = guard.check_identity_quota(identity)
    return UsageResp(
        allowed=status.allowed,
        remaining=status.remaining,
        used=status.used,
        limit=status.limit,
        reset_at=status.reset_at,
        warning_level=status.warning_level,
        warning=session_limit_warning(status),
        service_available=guard.check_global_gate(),
        requests_remaining=limiter.remaining(identity),
    )


@router.get("/stats", response_model=UserStats)
def user_stats(
    identity: str = Depends(get_identity),
    engine: InterviewEngine = Depends(get_engine),
) -> UserStats:
    return engine.stats(identity)


@router.post("/transcriptions", response_model=TranscriptionResp)
async def transcribe(
    request: Request,
    filename: str = "answer.webm",
    session_id: Optional[str] = None,
    identity: str = Depends(enforce_rate_limit),
    transcriber: Transcriber = Depends(get_transcriber),
) -> TranscriptionResp:
    audio = await _read_audio(request, settings.MAX_AUDIO_BYTES)
    text = await run_in_threadpool(
        transcriber.transcribe,
        audio,
        filename=filename,
        identity=identity,
        session_id=session_id,
    )
    return TranscriptionResp(text=text)
