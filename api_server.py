from __future__ import annotations  # FastAPI server exposing the mock interview service

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import router
from config.settings import settings
from errors import InterviewError, QuotaExceededError, UpstreamUnavailableError
from storage import migrate


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    migrate(settings.DB_PATH)
    yield


app = FastAPI(title="Mock Interview API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"]
)
app.include_router(router)


def _retry_after(exc: InterviewError) -> Dict[str, str]:  # Retry-After header for transient failures
    seconds = None
    if isinstance(exc, QuotaExceededError):
        seconds = exc.retry_after_seconds(datetime.now(timezone.utc))
    elif isinstance(exc, UpstreamUnavailableError):
        seconds = exc.retry_after
    return {"Retry-After": str(seconds)} if seconds is not None else {}


@app.exception_handler(InterviewError)
async def handle_interview_error(_: Request, exc: InterviewError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s: %s", exc.code, exc.detail)
    content = {"error": exc.code, "detail": exc.detail}
    content.update(exc.metadata())
    return JSONResponse(status_code=exc.status_code, content=content, headers=_retry_after(exc))


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}
