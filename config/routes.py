"""Route and flow configuration loaded from the JSON app config."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable

from pydantic import BaseModel, Field


class LlmRoute(BaseModel):
    """Provider endpoint configuration for one operation."""

    name: str
    base_url: str
    endpoint: str
    model: str
    timeout_s: float = Field(default=30.0, ge=0.1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    api_key_env: str | None = None
    response_format: str | None = None
    extra_headers: Dict[str, str] = Field(default_factory=dict)
    sequential: bool = False


class InterviewFlow(BaseModel):
    """Interview sizing knobs."""

    main_questions: int = Field(default=3, ge=1, le=10)
    min_questions: int = Field(default=3, ge=1)
    final_questions: int = Field(default=2, ge=2, le=2)


class AppConfig(BaseModel):
    """Application configuration root."""

    llm_routes: Dict[str, LlmRoute]
    registry: Dict[str, str]
    flow: InterviewFlow = Field(default_factory=InterviewFlow)


PARSE_JOB_KEY = "prompt_gateway.parse_job_description"
QUESTIONS_KEY = "prompt_gateway.generate_questions"
ANALYZE_KEY = "prompt_gateway.analyze_answer"
FOLLOW_UP_KEY = "prompt_gateway.generate_follow_up"
FINAL_PAIR_KEY = "prompt_gateway.generate_final_pair"
REPORT_KEY = "prompt_gateway.generate_feedback_report"
TRANSCRIBE_KEY = "transcription.transcribe"

GATEWAY_TARGETS = (
    PARSE_JOB_KEY,
    QUESTIONS_KEY,
    ANALYZE_KEY,
    FOLLOW_UP_KEY,
    FINAL_PAIR_KEY,
    REPORT_KEY,
)


def load_config(path: Path) -> AppConfig:
    """Load configuration from disk."""

    data = path.read_text(encoding="utf-8")
    return AppConfig.model_validate_json(data)


def resolve_routes(cfg: AppConfig, targets: Iterable[str]) -> Dict[str, LlmRoute]:
    """Map each registry target to its configured route."""

    resolved: Dict[str, LlmRoute] = {}
    for target in targets:
        if target not in cfg.registry:
            raise KeyError(f"Registry entry missing for '{target}'")
        route_id = cfg.registry[target]
        if route_id not in cfg.llm_routes:
            raise KeyError(f"Route '{route_id}' missing for '{target}'")
        resolved[target] = cfg.llm_routes[route_id]
    return resolved
