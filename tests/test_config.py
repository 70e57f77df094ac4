"""Tests for config loading and ${ENV} resolution."""

import pytest

from omnichat import config


@pytest.fixture(autouse=True)
def fresh_config():
    config.reset_config()
    yield
    config.reset_config()


def test_env_vars_resolved(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(
        "api_keys:\n"
        "  openai: ${OMNICHAT_TEST_KEY}\n"
        "  groq: ${OMNICHAT_TEST_UNSET}\n"
        "connectors:\n"
        "  youtube:\n"
        "    api_key: prefix-${OMNICHAT_TEST_KEY}\n"
        "defaults:\n"
        "  models: [gpt-4o, '${OMNICHAT_TEST_MODEL}']\n"
    )
    monkeypatch.setenv("OMNICHAT_TEST_KEY", "sk-123")
    monkeypatch.setenv("OMNICHAT_TEST_MODEL", "claude-3-opus-20240229")
    monkeypatch.delenv("OMNICHAT_TEST_UNSET", raising=False)

    cfg = config.load_config(path)
    assert cfg["api_keys"]["openai"] == "sk-123"
    assert cfg["api_keys"]["groq"] == ""
    assert cfg["connectors"]["youtube"]["api_key"] == "prefix-sk-123"
    assert cfg["defaults"]["models"] == ["gpt-4o", "claude-3-opus-20240229"]


def test_config_path_from_env(tmp_path, monkeypatch):
    path = tmp_path / "other.yaml"
    path.write_text("orchestrator:\n  max_models: 2\n")
    monkeypatch.setenv("OMNICHAT_CONFIG", str(path))

    assert config.get_config()["orchestrator"]["max_models"] == 2


def test_config_is_cached_until_reset(tmp_path, monkeypatch):
    path = tmp_path / "c.yaml"
    path.write_text("logging:\n  level: DEBUG\n")
    monkeypatch.setenv("OMNICHAT_CONFIG", str(path))
    first = config.get_config()

    path.write_text("logging:\n  level: ERROR\n")
    assert config.get_config() is first

    config.reset_config()
    assert config.get_config()["logging"]["level"] == "ERROR"


def test_empty_file_is_empty_config(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert config.load_config(path) == {}


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        config.load_config(tmp_path / "nope.yaml")


def test_bundled_config_loads(monkeypatch):
    monkeypatch.delenv("OMNICHAT_CONFIG", raising=False)
    cfg = config.get_config()
    assert cfg["orchestrator"]["max_models"] == 6
    assert set(cfg["commands"]["models"]) == {"image", "video", "web", "deep"}
