from __future__ import annotations  # Speech-to-text over an OpenAI-compatible transcription endpoint

import logging
import mimetypes
import os
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol, Tuple

import httpx

from config import LlmRoute
from config.settings import settings
from errors import PayloadTooLargeError, UsageLimitError, ValidationError
from llm_gateway import LlmGatewayError
from retry_client import HttpResponse, RetryExhaustedError, RetryOptions, execute
from usage_guard import estimate_audio_tokens

if TYPE_CHECKING:
    from usage_guard import UsageGuard

logger = logging.getLogger(__name__)

TRANSCRIPTION_LANGUAGE = "en"


class MultipartClient(Protocol):  # Minimal multipart-capable HTTP client
    def post(
        self,
        url: str,
        *,
        files: Dict[str, Tuple[str, bytes, str]],
        data: Dict[str, str],
        headers: Dict[str, str],
        timeout: float,
    ) -> HttpResponse: ...


class Transcriber:  # Turns recorded answers into text
    def __init__(
        self,
        route: LlmRoute,
        guard: "UsageGuard",
        *,
        client: Optional[MultipartClient] = None,
        retry: Optional[RetryOptions] = None,
        max_bytes: Optional[int] = None,
    ) -> None:
        self._route = route
        self._max_bytes = max_bytes or settings.MAX_AUDIO_BYTES
        self._guard = guard
        self._client = client
        self._retry = retry

    def transcribe(
        self,
        audio: bytes,
        *,
        filename: str = "answer.webm",
        identity: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> str:
        if not audio:
            raise ValidationError("Audio payload is empty")
        if len(audio) > self._max_bytes:
            raise PayloadTooLargeError(f"Audio exceeds {self._max_bytes} bytes")
        if not self._guard.check_global_gate():
            raise UsageLimitError("The AI interview service is temporarily paused. Please try again later.")

        content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        files = {"file": (filename, audio, content_type)}
        data = {"model": self._route.model, "language": TRANSCRIPTION_LANGUAGE}
        url = f"{self._route.base_url}{self._route.endpoint}"
        logger.info("Transcription start route=%s bytes=%d", self._route.name, len(audio))

        if self._client is not None:
            response = self._send(self._client, url, files, data)
        else:
            with httpx.Client(timeout=self._route.timeout_s) as http_client:
                response = self._send(http_client, url, files, data)
        if response.status_code >= 400:
            logger.error("Transcription error status: %s", response.status_code)
            raise LlmGatewayError(f"Transcription returned status {response.status_code}")
        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise LlmGatewayError("Transcription payload was not JSON") from exc
        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise LlmGatewayError("Transcription response missing text")

        self._guard.record_token_spend(
            estimate_audio_tokens(len(audio)),
            0,
            identity=identity,
            session_id=session_id,
            operation="transcribe",
        )
        return text.strip()

    def _send(
        self,
        client: MultipartClient,
        url: str,
        files: Dict[str, Tuple[str, bytes, str]],
        data: Dict[str, str],
    ) -> HttpResponse:
        options = self._retry or RetryOptions.from_settings()
        try:
            return execute(
                lambda: client.post(url, files=files, data=data, headers=self._headers(), timeout=self._route.timeout_s),
                options,
            )
        except RetryExhaustedError as exc:
            logger.error("Transcription transport failure route=%s: %s", self._route.name, exc)
            raise LlmGatewayError(
                f"Transcription temporarily unavailable: {exc}",
                retry_after=max(1, options.worst_case_wait_ms() // 1000),
            ) from exc

    def _headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self._route.api_key_env:
            api_key = os.getenv(self._route.api_key_env)
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"
        headers.update(self._route.extra_headers)
        return headers


__all__ = ["MultipartClient", "Transcriber"]
