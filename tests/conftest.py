import json
import os
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import GATEWAY_TARGETS, TRANSCRIBE_KEY, AppConfig, resolve_routes
from config.settings import settings
from interview_session import InterviewEngine
from prompt_gateway import PromptGateway
from retry_client import RetryOptions
from storage import SessionStore, UsageStore
from storage.migrate import migrate
from usage_guard import UsageGuard


ROUTE = {
    "name": "stub-route",
    "base_url": "http://localhost",
    "endpoint": "/v1/chat/completions",
    "model": "stub-model",
    "timeout_s": 5,
    "api_key_env": None,
    "sequential": False,
}

TEST_CONFIG = AppConfig.model_validate(
    {
        "llm_routes": {
            "stub-route": ROUTE,
            "stub-audio": {**ROUTE, "name": "stub-audio", "endpoint": "/v1/audio/transcriptions", "model": "whisper-1"},
        },
        "registry": {
            **{target: "stub-route" for target in GATEWAY_TARGETS},
            TRANSCRIBE_KEY: "stub-audio",
        },
        "flow": {"main_questions": 3, "min_questions": 3},
    }
)

FAST_RETRY = RetryOptions(max_retries=1, initial_delay_ms=0, max_delay_ms=0)

JOB_DESCRIPTION = (
    "Role: Senior Backend Engineer\n"
    "We are hiring at Acme Corp. You will build Python services and distributed systems."
)

JOB_REPLY = {
    "jobTitle": "Senior Backend Engineer",
    "company": "Acme Corp",
    "requiredSkills": ["Python", "Distributed Systems"],
    "preferredSkills": ["Kubernetes"],
    "responsibilities": ["Build services"],
    "qualifications": ["5 years experience"],
    "companyValues": [],
}

QUESTIONS_REPLY = {
    "questions": [
        {"id": "q1", "text": "How do you design an idempotent API in Python?", "type": "technical", "skill": "Python", "difficulty": "hard"},
        {"id": "q2", "text": "Tell me about a time you resolved a team conflict.", "type": "behavioral", "skill": "Teamwork", "difficulty": "medium"},
        {"id": "q3", "text": "Two incidents page you at once. What do you do?", "type": "situational", "skill": "Prioritization", "difficulty": "medium"},
    ]
}

ANALYSIS_REPLY = {
    "strengths": ["Clear structure"],
    "weaknesses": ["Could quantify impact"],
    "missingCompetencies": [],
    "score": 7,
    "needsFollowUp": True,
}

REPORT_REPLY = {
    "summary": "Solid interview with clear answers.",
    "strengths": ["Clear communication"],
    "areasForImprovement": ["Quantify results"],
    "questionFeedback": [],
    "nextSteps": ["Practice system design questions"],
}

# Each prompt builder opens with one of these phrases
MARKERS = {
    "parse_job": "Parse the job description",
    "questions": "Generate exactly",
    "analyze": "Evaluate the candidate answer",
    "follow_up": "Ask one follow-up question",
    "final_pair": "Write the two closing questions",
    "report": "Write a feedback report",
}


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    @property
    def text(self):
        return json.dumps(self._payload)

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


def chat_reply(content, prompt_tokens=120, completion_tokens=60):
    if not isinstance(content, str):
        content = json.dumps(content)
    return FakeResponse(
        200,
        {
            "choices": [{"message": {"role": "assistant", "content": content}}],
            "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
        },
    )


class ScriptedLLM:
    """Chat-completions double that answers by prompt type."""

    def __init__(self, **overrides):
        self.replies = {
            "parse_job": JOB_REPLY,
            "questions": QUESTIONS_REPLY,
            "analyze": ANALYSIS_REPLY,
            "follow_up": 'Interviewer: "Can you walk me through a concrete example?"',
            "final_pair": "1. Why do you want to join Acme Corp?\n2. How would you explain recursion to a child?",
            "report": REPORT_REPLY,
        }
        self.replies.update(overrides)
        self.calls = []

    def post(self, url, *, json, headers, timeout):
        prompt = json["messages"][-1]["content"]
        for operation, marker in MARKERS.items():
            if prompt.startswith(marker):
                self.calls.append(operation)
                reply = self.replies[operation]
                if callable(reply):
                    reply = reply(json)
                if isinstance(reply, Exception):
                    raise reply
                if isinstance(reply, FakeResponse):
                    return reply
                return chat_reply(reply)
        raise AssertionError(f"Unexpected prompt: {prompt[:80]}")

    def count(self, operation):
        return self.calls.count(operation)


class FakeClock:
    def __init__(self, now=None):
        self.now = now or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture(autouse=True)
def tmp_db(monkeypatch):
    td = tempfile.TemporaryDirectory()
    db_path = os.path.join(td.name, "test.db")
    monkeypatch.setattr(settings, "DB_PATH", db_path, raising=False)
    migrate(db_path)
    try:
        yield db_path
    finally:
        td.cleanup()


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def usage_store():
    return UsageStore()


@pytest.fixture
def guard(usage_store, clock):
    return UsageGuard(usage_store, cfg=settings, clock=clock)


@pytest.fixture
def gateway(llm, guard):
    routes = resolve_routes(TEST_CONFIG, GATEWAY_TARGETS)
    return PromptGateway(routes, guard, client=llm, retry=FAST_RETRY, flow=TEST_CONFIG.flow)


@pytest.fixture
def session_store():
    return SessionStore()


@pytest.fixture
def engine(session_store, gateway, guard):
    return InterviewEngine(session_store, gateway, guard, flow=TEST_CONFIG.flow, settings=settings)
