"""Tests for YAML config loading with env var resolution."""

import pytest
from pydantic import ValidationError

from pinegate.config import PineGateConfig, load_config, resolve_env_vars


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    """Isolate from real config files and PINEGATE_* overrides."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("PINEGATE_CONFIG_PATH", raising=False)
    for name in ("PINEGATE_PROBER_DELAY_SECONDS", "PINEGATE_GRANTS_ACCEPT_AMBIGUOUS_RESPONSE",
                 "PINEGATE_DAEMON_PORT", "PINEGATE_SCHEDULER_ENABLED"):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:

    def test_no_file_gives_defaults(self):
        config = load_config()
        assert config.platform.base_url == "https://www.tradingview.com"
        assert config.prober.revalidate_after_hours == 6.0
        assert config.prober.delay_seconds == 2.0
        assert config.grants.default_trial_days == 7
        assert config.grants.accept_ambiguous_response is True
        assert config.scheduler.enabled is False

    def test_explicit_missing_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))


class TestYamlLoading:

    def test_cwd_file_found(self, tmp_path):
        (tmp_path / "pinegate.yaml").write_text(
            "prober:\n  revalidate_after_hours: 12\ngrants:\n  default_trial_days: 14\n"
        )
        config = load_config()
        assert config.prober.revalidate_after_hours == 12
        assert config.grants.default_trial_days == 14

    def test_explicit_path(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("daemon:\n  port: 9100\n")
        assert load_config(str(path)).daemon.port == 9100

    def test_config_path_env(self, tmp_path, monkeypatch):
        path = tmp_path / "from-env.yaml"
        path.write_text("scheduler:\n  enabled: true\n")
        monkeypatch.setenv("PINEGATE_CONFIG_PATH", str(path))
        assert load_config().scheduler.enabled is True

    def test_empty_file(self, tmp_path):
        (tmp_path / "pinegate.yaml").write_text("")
        assert load_config() == PineGateConfig()

    def test_env_var_references(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TV_BASE", "https://tv.test")
        (tmp_path / "pinegate.yaml").write_text("platform:\n  base_url: ${TV_BASE}\n")
        assert load_config().platform.base_url == "https://tv.test"

    def test_invalid_value_rejected(self, tmp_path):
        (tmp_path / "pinegate.yaml").write_text("grants:\n  claim_timeout_seconds: 0\n")
        with pytest.raises(ValidationError):
            load_config()


class TestEnvOverrides:

    def test_override_beats_yaml(self, tmp_path, monkeypatch):
        (tmp_path / "pinegate.yaml").write_text("prober:\n  delay_seconds: 5\n")
        monkeypatch.setenv("PINEGATE_PROBER_DELAY_SECONDS", "0.5")
        assert load_config().prober.delay_seconds == 0.5

    def test_bool_coercion(self, monkeypatch):
        monkeypatch.setenv("PINEGATE_GRANTS_ACCEPT_AMBIGUOUS_RESPONSE", "false")
        assert load_config().grants.accept_ambiguous_response is False

    def test_unrelated_env_ignored(self, monkeypatch):
        monkeypatch.setenv("PINEGATE_ADMIN_API_KEY", "x" * 40)
        monkeypatch.setenv("PINEGATE_DATA_DIR", "/tmp/whatever")
        assert load_config() == PineGateConfig()


def test_resolve_missing_var_is_empty(monkeypatch):
    monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
    assert resolve_env_vars("a${NOT_SET_ANYWHERE}b") == "ab"
