"""Configuration package for the mock interview service."""
from .routes import (
    ANALYZE_KEY,
    FINAL_PAIR_KEY,
    FOLLOW_UP_KEY,
    GATEWAY_TARGETS,
    PARSE_JOB_KEY,
    QUESTIONS_KEY,
    REPORT_KEY,
    TRANSCRIBE_KEY,
    AppConfig,
    InterviewFlow,
    LlmRoute,
    load_config,
    resolve_routes,
)
from .settings import Settings, settings

__all__ = [
    "ANALYZE_KEY",
    "FINAL_PAIR_KEY",
    "FOLLOW_UP_KEY",
    "GATEWAY_TARGETS",
    "PARSE_JOB_KEY",
    "QUESTIONS_KEY",
    "REPORT_KEY",
    "TRANSCRIBE_KEY",
    "AppConfig",
    "InterviewFlow",
    "LlmRoute",
    "load_config",
    "resolve_routes",
    "Settings",
    "settings",
]
