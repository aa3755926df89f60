"""Tests for configuration loading."""

import pytest

from shoppatrol.core.config import ConfigError, SessionConfig, load_app_config
from shoppatrol.core.config.loader import validate_app_config_file


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("SHOPPATROL_CREDENTIALS", raising=False)
    monkeypatch.delenv("SHOPPATROL_CATALOG_TOKEN", raising=False)


def test_missing_file_gives_defaults(tmp_path):
    config = load_app_config(tmp_path / "nope.yaml")
    assert config.session.max_pages == 20
    assert config.session.fleet_max_pages == 50
    assert config.session.retry_limit == 3
    assert config.session.credentials == []


def test_env_expansion_with_default(tmp_path, monkeypatch):
    path = tmp_path / "app.yaml"
    path.write_text(
        "session:\n"
        "  classifier_url: ${ORACLE_URL:-http://fallback/api}\n"
        "  catalog_auth_token: ${APP_ID}\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("APP_ID", "app-123")

    config = load_app_config(path)

    assert config.session.classifier_url == "http://fallback/api"
    assert config.session.catalog_auth_token == "app-123"


def test_env_secrets_override_file(tmp_path, monkeypatch):
    path = tmp_path / "app.yaml"
    path.write_text("session:\n  credentials: [file-key]\n", encoding="utf-8")
    monkeypatch.setenv("SHOPPATROL_CREDENTIALS", "env-a, env-b\nenv-c")
    monkeypatch.setenv("SHOPPATROL_CATALOG_TOKEN", " token\n")

    session = load_app_config(path).session

    assert session.credentials == ["env-a", "env-b", "env-c"]
    assert session.catalog_auth_token == "token"


def test_invalid_yaml_raises(tmp_path):
    path = tmp_path / "app.yaml"
    path.write_text("session: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_app_config(path)


def test_invalid_values_reported(tmp_path):
    path = tmp_path / "app.yaml"
    path.write_text("session:\n  batch_size_cap: 0\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_app_config(path)
    errors = validate_app_config_file(path)
    assert any("batch_size_cap" in e for e in errors)


class TestSessionConfig:
    def test_credentials_cleaned(self):
        session = SessionConfig(credentials=" a\t,\n b ,,")
        assert session.credentials == ["a", "b"]

    @pytest.mark.parametrize(
        "count, expected",
        [(1, 4), (2, 8), (7, 28), (10, 30)],
    )
    def test_batch_size_scales_and_caps(self, count, expected):
        session = SessionConfig(credentials=[f"k{i}" for i in range(count)])
        assert session.batch_size == expected

    def test_require_runnable(self):
        with pytest.raises(ConfigError):
            SessionConfig(catalog_auth_token="x").require_runnable()
        with pytest.raises(ConfigError):
            SessionConfig(credentials=["k"]).require_runnable()
        SessionConfig(credentials=["k"], catalog_auth_token="x").require_runnable()
