import pytest
from pydantic import ValidationError

from recall_agent.infrastructure.config.settings import AgentSettings, load_settings


def test_defaults_match_documented_constants():
    settings = load_settings(_env_file=None)

    assert settings.retrieval.top_k == 3
    assert settings.retrieval.min_score == 0.15
    assert settings.retrieval.keyword_fallback_threshold == 2
    assert settings.retrieval.keyword_base_increment == 0.3
    assert settings.retrieval.keyword_boundary_bonus == 0.2
    assert settings.retrieval.tie_break_epsilon == 0.1
    assert settings.reflection.quality_threshold == 7
    assert settings.reflection.query_length_threshold == 100
    assert settings.reflection.response_length_threshold == 500
    assert settings.tools.parse_text_tool_calls is True
    assert settings.tracing.langfuse_enabled is False


def test_nested_environment_overrides(monkeypatch):
    monkeypatch.setenv("RECALL_RETRIEVAL__TOP_K", "7")
    monkeypatch.setenv("RECALL_REFLECTION__STRATEGY", "static")
    monkeypatch.setenv("RECALL_HISTORY_LIMIT", "4")

    settings = AgentSettings(_env_file=None)

    assert settings.retrieval.top_k == 7
    assert settings.reflection.strategy == "static"
    assert settings.history_limit == 4


def test_keyword_overrides_win():
    settings = load_settings(_env_file=None, store_memories=False)

    assert settings.store_memories is False


def test_invalid_values_are_rejected(monkeypatch):
    monkeypatch.setenv("RECALL_REFLECTION__STRATEGY", "sometimes")

    with pytest.raises(ValidationError):
        AgentSettings(_env_file=None)
