from __future__ import annotations

import pytest

from conftest import FAST_RETRY, TEST_CONFIG, FakeResponse
from config import TRANSCRIBE_KEY, resolve_routes
from config.settings import settings
from errors import PayloadTooLargeError, UpstreamUnavailableError, UsageLimitError, ValidationError
from transcription import Transcriber


class AudioClient:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def post(self, url, *, files, data, headers, timeout):
        self.requests.append({"url": url, "files": files, "data": data})
        return self.responses.pop(0)


def _transcriber(client, guard):
    route = resolve_routes(TEST_CONFIG, [TRANSCRIBE_KEY])[TRANSCRIBE_KEY]
    return Transcriber(route, guard, client=client, retry=FAST_RETRY)


def test_transcribe_posts_multipart_and_records_spend(guard, usage_store):
    client = AudioClient(FakeResponse(200, {"text": "  I led the migration.  "}))
    text = _transcriber(client, guard).transcribe(b"\x00" * 64000, identity="alice", session_id="s1")
    assert text == "I led the migration."

    request = client.requests[0]
    assert request["url"] == "http://localhost/v1/audio/transcriptions"
    assert request["data"] == {"model": "whisper-1", "language": "en"}
    filename, payload, _ = request["files"]["file"]
    assert filename == "answer.webm"
    assert len(payload) == 64000

    row = usage_store.recent_usage(1)[0]
    assert row.operation == "transcribe"
    assert row.prompt_tokens == 200
    assert row.completion_tokens == 0


def test_empty_audio_is_rejected(guard):
    client = AudioClient()
    with pytest.raises(ValidationError):
        _transcriber(client, guard).transcribe(b"")
    assert client.requests == []


def test_oversized_audio_is_rejected(guard, monkeypatch):
    monkeypatch.setattr(settings, "MAX_AUDIO_BYTES", 32)
    client = AudioClient(FakeResponse(200, {"text": "ok"}))
    with pytest.raises(PayloadTooLargeError) as info:
        _transcriber(client, guard).transcribe(b"\x00" * 33)
    assert isinstance(info.value, ValidationError)
    assert info.value.status_code == 413
    assert client.requests == []

    assert _transcriber(client, guard).transcribe(b"\x00" * 32) == "ok"


def test_closed_gate_blocks_transcription(guard):
    guard._store.write_gate(False)
    client = AudioClient()
    with pytest.raises(UsageLimitError):
        _transcriber(client, guard).transcribe(b"audio")
    assert client.requests == []


def test_retries_then_gives_up(guard):
    client = AudioClient(FakeResponse(500, None), FakeResponse(503, None))
    with pytest.raises(UpstreamUnavailableError):
        _transcriber(client, guard).transcribe(b"audio")
    assert len(client.requests) == FAST_RETRY.max_retries + 1


def test_missing_text_is_an_upstream_failure(guard):
    client = AudioClient(FakeResponse(200, {"transcript": "nope"}))
    with pytest.raises(UpstreamUnavailableError):
        _transcriber(client, guard).transcribe(b"audio")
