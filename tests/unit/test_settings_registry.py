from pathlib import Path

import pytest
from pydantic import ValidationError

from config import GATEWAY_TARGETS, TRANSCRIBE_KEY, AppConfig, load_config, resolve_routes
from config.settings import Settings

ROOT = Path(__file__).resolve().parents[2]


def test_settings_defaults():
    settings = Settings(_env_file=None)
    assert settings.DB_PATH.endswith(".db")
    assert settings.SESSION_LIMIT_MODE == "identity"
    assert settings.session_limit() == settings.DAILY_SESSION_LIMIT


def test_user_mode_uses_user_limit():
    settings = Settings(_env_file=None, SESSION_LIMIT_MODE="user", USER_SESSION_LIMIT=2)
    assert settings.session_limit() == 2


def test_unknown_limit_mode_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, SESSION_LIMIT_MODE="team")


def test_bundled_config_covers_every_target():
    cfg = load_config(ROOT / "app_config.json")
    routes = resolve_routes(cfg, [*GATEWAY_TARGETS, TRANSCRIBE_KEY])
    assert routes[TRANSCRIBE_KEY].endpoint == "/audio/transcriptions"
    assert cfg.flow.main_questions == 3
    assert cfg.flow.final_questions == 2


def test_missing_registry_entry_raises():
    cfg = AppConfig.model_validate({"llm_routes": {}, "registry": {}})
    with pytest.raises(KeyError):
        resolve_routes(cfg, GATEWAY_TARGETS)


def test_registry_pointing_at_unknown_route_raises():
    cfg = AppConfig.model_validate({"llm_routes": {}, "registry": {TRANSCRIBE_KEY: "nowhere"}})
    with pytest.raises(KeyError, match="nowhere"):
        resolve_routes(cfg, [TRANSCRIBE_KEY])
