from __future__ import annotations  # LLM request gateway module

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Sequence

import httpx

from config import LlmRoute
from errors import UpstreamUnavailableError
from retry_client import HttpResponse, RetryExhaustedError, RetryOptions, execute


logger = logging.getLogger(__name__)  # Module logger setup


_MODEL_LOCKS: Dict[str, threading.Lock] = {}
_MODEL_LOCKS_GUARD = threading.Lock()


class HttpClient(Protocol):  # Minimal HTTP client protocol
    def post(self, url: str, *, json: Dict[str, Any], headers: Dict[str, str], timeout: float) -> HttpResponse: ...


class LlmGatewayError(UpstreamUnavailableError):  # Provider call failed or returned unusable payload
    pass


@dataclass
class Completion:  # Text completion with usage counters
    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


def _lock_for(cfg: LlmRoute) -> threading.Lock:
    key = cfg.name or f"{cfg.base_url}{cfg.endpoint}"
    with _MODEL_LOCKS_GUARD:
        lock = _MODEL_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _MODEL_LOCKS[key] = lock
    return lock


def complete(
    messages: Sequence[Dict[str, str]],
    *,
    cfg: LlmRoute,
    client: Optional[HttpClient] = None,
    retry: Optional[RetryOptions] = None,
    json_mode: bool = False,
) -> Completion:  # Invoke configured LLM route and return raw text with usage
    def _execute() -> Completion:
        payload: Dict[str, Any] = {
            "model": cfg.model,
            "messages": _normalize_messages(messages),
            "temperature": cfg.temperature,
        }
        if cfg.max_tokens:
            payload["max_tokens"] = cfg.max_tokens
        response_format = "json_object" if json_mode else cfg.response_format
        if response_format:
            payload["response_format"] = {"type": response_format}
        headers = _headers(cfg)
        url = f"{cfg.base_url}{cfg.endpoint}"
        logger.info(
            "LLM request start route=%s model=%s preview=%s",
            cfg.name,
            cfg.model,
            _preview(payload["messages"]),
        )
        if client is not None:
            response = _send(client, url, payload, headers, cfg, retry)
        else:
            with httpx.Client(timeout=cfg.timeout_s) as http_client:
                response = _send(http_client, url, payload, headers, cfg, retry)
        if response.status_code >= 400:
            logger.error("LLM error status: %s", response.status_code)
            raise LlmGatewayError(f"LLM returned status {response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            logger.error("Invalid JSON payload from LLM: %s", exc)
            raise LlmGatewayError("LLM payload was not JSON") from exc
        completion = Completion(
            text=_strip_code_fences(_extract_content(data)),
            prompt_tokens=_usage(data, "prompt_tokens"),
            completion_tokens=_usage(data, "completion_tokens"),
        )
        logger.info(
            "LLM request done route=%s model=%s prompt_tokens=%d completion_tokens=%d",
            cfg.name,
            cfg.model,
            completion.prompt_tokens,
            completion.completion_tokens,
        )
        return completion

    if cfg.sequential:
        with _lock_for(cfg):
            return _execute()
    return _execute()


def _send(
    client: HttpClient,
    url: str,
    payload: Dict[str, Any],
    headers: Dict[str, str],
    cfg: LlmRoute,
    retry: Optional[RetryOptions],
) -> HttpResponse:  # Dispatch HTTP request through the retry client
    options = retry or RetryOptions.from_settings()
    try:
        return execute(
            lambda: client.post(url, json=payload, headers=headers, timeout=cfg.timeout_s),
            options,
        )
    except RetryExhaustedError as exc:
        logger.error("LLM transport failure route=%s: %s", cfg.name, exc)
        raise LlmGatewayError(
            f"Language model temporarily unavailable: {exc}",
            retry_after=max(1, options.worst_case_wait_ms() // 1000),
        ) from exc


def _headers(cfg: LlmRoute) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if cfg.api_key_env:
        api_key = os.getenv(cfg.api_key_env)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
    headers.update(cfg.extra_headers)
    return headers


def _normalize_messages(messages: Sequence[Dict[str, str]]) -> list[Dict[str, str]]:  # Ensure message payload shape
    normalized: list[Dict[str, str]] = []
    for item in messages:
        if not isinstance(item, dict):
            raise TypeError("Each chat message must be a dict with role/content")
        role = str(item.get("role", "")).strip()
        content = str(item.get("content", ""))
        if not role:
            raise ValueError("Chat message missing role")
        normalized.append({"role": role, "content": content})
    return normalized


def _preview(messages: Sequence[Dict[str, str]]) -> str:  # Build preview string for logging
    for message in messages:
        text = message.get("content", "").strip()
        if text:
            line = text.splitlines()[0]
            return line[:117] + "..." if len(line) > 120 else line
    return ""


def _extract_content(data: Any) -> str:  # Extract message content from LLM response
    if isinstance(data, dict):
        choices = data.get("choices")
        if isinstance(choices, list) and choices:
            first = choices[0] if isinstance(choices[0], dict) else {}
            message = first.get("message")
            content = message.get("content") if isinstance(message, dict) else first.get("text")
            if isinstance(content, str):
                return content
        if isinstance(data.get("content"), str):
            return data["content"]
    raise LlmGatewayError("LLM response missing content")


def _usage(data: Any, key: str) -> int:
    usage = data.get("usage") if isinstance(data, dict) else None
    if not isinstance(usage, dict):
        return 0
    try:
        return max(0, int(usage.get(key) or 0))
    except (TypeError, ValueError):
        return 0


def _strip_code_fences(content: str) -> str:  # Remove common markdown fences from LLM output
    text = content.strip()
    if text.startswith("```"):
        lines = text.splitlines()
        if lines:
            lines = lines[1:]
            while lines and lines[0].strip() == "":
                lines = lines[1:]
            while lines and lines[-1].strip() == "":
                lines = lines[:-1]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            text = "\n".join(lines).strip()
    return text
