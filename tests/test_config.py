"""Tests for config loading, overrides and validation."""
import pytest
import yaml

from config import _deep_merge, get_config, load_config


def test_defaults_load():
    config = load_config()
    assert config["database"]["path"] == "data/opsrules.db"
    assert config["engine"]["max_workers"] == 4
    assert config["audit"]["batch_size"] == 1
    assert config["abtest"]["confidence_level"] == 0.95
    assert get_config() is config


def test_file_overrides_merge_with_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"engine": {"max_workers": 8}, "audit": {"batch_size": 50}}))
    config = load_config(str(path))
    assert config["engine"]["max_workers"] == 8
    assert config["engine"]["action_timeout_seconds"] == 5
    assert config["audit"]["batch_size"] == 50
    assert config["audit"]["record_evaluations"] is True


def test_missing_override_file_uses_defaults(tmp_path):
    config = load_config(str(tmp_path / "absent.yaml"))
    assert config["engine"]["max_workers"] == 4


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("OPSRULES_DB_PATH", "/tmp/other.db")
    monkeypatch.setenv("OPSRULES_MAX_WORKERS", "2")
    monkeypatch.setenv("OPSRULES_LOG_LEVEL", "DEBUG")
    config = load_config()
    assert config["database"]["path"] == "/tmp/other.db"
    assert config["engine"]["max_workers"] == 2
    assert config["logging"]["level"] == "DEBUG"


@pytest.mark.parametrize("override", [
    {"engine": {"max_workers": 0}},
    {"engine": {"action_timeout_seconds": 0}},
    {"audit": {"batch_size": 0}},
    {"abtest": {"confidence_level": 1.5}},
])
def test_invalid_values_rejected(tmp_path, override):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(override))
    with pytest.raises(ValueError):
        load_config(str(path))


def test_deep_merge_does_not_mutate_base():
    base = {"a": {"b": 1, "c": 2}, "d": 3}
    merged = _deep_merge(base, {"a": {"b": 10}, "e": 5})
    assert merged == {"a": {"b": 10, "c": 2}, "d": 3, "e": 5}
    assert base["a"]["b"] == 1


def test_config_file_from_environment(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"web": {"port": 8080}}))
    monkeypatch.setenv("OPSRULES_CONFIG", str(path))
    assert load_config()["web"]["port"] == 8080


def test_bad_environment_value(monkeypatch):
    monkeypatch.setenv("OPSRULES_AUDIT_BATCH_SIZE", "lots")
    with pytest.raises(ValueError, match="OPSRULES_AUDIT_BATCH_SIZE"):
        load_config()


def test_float_environment_value(monkeypatch):
    monkeypatch.setenv("OPSRULES_CONFIDENCE_LEVEL", "0.99")
    assert load_config()["abtest"]["confidence_level"] == 0.99
