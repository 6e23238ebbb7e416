"""
Tests for configuration file loader.
"""

import pytest

from shepherd_remediation.config_loader import (
    deep_merge,
    find_config_file,
    flatten_config,
    get_env_config,
    load_config_file,
    load_config_with_overrides,
    load_toml_file,
    load_yaml_file,
    merge_config,
)
from shepherd_remediation.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("STORE_BACKEND", "AUDIT_BACKEND", "EXECUTOR_MAX_ATTEMPTS", "LOG_JSON", "LOG_LEVEL"):
        monkeypatch.delenv(f"REMEDIATION_{name}", raising=False)


class TestLoadYAMLFile:
    """Tests for YAML file loading."""

    def test_load_valid_yaml(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("""
store:
  backend: sqlite
  sqlite_path: /var/lib/remediation/jobs.db
executor:
  max_attempts: 6
""")

        config = load_yaml_file(config_file)

        assert config["store"]["backend"] == "sqlite"
        assert config["executor"]["max_attempts"] == 6

    def test_load_empty_yaml(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")

        assert load_yaml_file(config_file) == {}

    def test_load_nonexistent_yaml(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_yaml_file(tmp_path / "nonexistent.yaml")

    def test_load_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("store: [unclosed")

        with pytest.raises(ConfigurationError):
            load_yaml_file(config_file)

    def test_load_non_mapping_yaml(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            load_yaml_file(config_file)


class TestLoadTOMLFile:
    """Tests for TOML file loading."""

    def test_load_valid_toml(self, tmp_path):
        config_file = tmp_path / "config.toml"
        config_file.write_text("""
[approval]
channel = "webhook"
webhook_url = "https://hooks.example.com/approvals"
""")

        config = load_toml_file(config_file)

        assert config["approval"]["channel"] == "webhook"

    def test_load_invalid_toml(self, tmp_path):
        config_file = tmp_path / "config.toml"
        config_file.write_text("[approval\nchannel = ")

        with pytest.raises(ConfigurationError):
            load_toml_file(config_file)


def test_load_config_file_rejects_unknown_extension(tmp_path):
    config_file = tmp_path / "config.ini"
    config_file.write_text("[store]")

    with pytest.raises(ConfigurationError, match="Unsupported config file format"):
        load_config_file(config_file)


def test_find_config_file_in_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config_file = tmp_path / "shepherd-remediation.toml"
    config_file.write_text("[store]\nbackend = \"memory\"\n")

    assert find_config_file() == config_file


def test_get_env_config_parses_types(monkeypatch):
    monkeypatch.setenv("REMEDIATION_STORE_BACKEND", "dynamodb")
    monkeypatch.setenv("REMEDIATION_EXECUTOR_MAX_ATTEMPTS", "7")
    monkeypatch.setenv("REMEDIATION_LOG_JSON", "yes")

    config = get_env_config()

    assert config["store"] == {"backend": "dynamodb"}
    assert config["executor"] == {"max_attempts": 7}
    assert config["logging"] == {"json": True}


def test_get_env_config_ignores_bad_values(monkeypatch):
    monkeypatch.setenv("REMEDIATION_EXECUTOR_MAX_ATTEMPTS", "many")

    assert "executor" not in get_env_config()


def test_deep_merge():
    base = {"store": {"backend": "sqlite", "sqlite_path": "a.db"}, "logging": {"level": "INFO"}}
    override = {"store": {"backend": "dynamodb"}}

    merged = deep_merge(base, override)

    assert merged == {"store": {"backend": "dynamodb", "sqlite_path": "a.db"}, "logging": {"level": "INFO"}}
    assert base["store"]["backend"] == "sqlite"


def test_flatten_config_drops_unknown_keys():
    flat = flatten_config({
        "store": {"backend": "sqlite", "shards": 4},
        "guardrails": {"business_hours_start": 8},
        "extra": "not a section",
    })

    assert flat == {"store_backend": "sqlite", "business_hours_start": 8}


def test_merge_config_env_wins():
    flat = merge_config({"audit": {"backend": "memory"}}, {"audit": {"backend": "file"}})

    assert flat == {"audit_backend": "file"}


def test_load_config_with_overrides(tmp_path, monkeypatch):
    config_file = tmp_path / "remediation.yaml"
    config_file.write_text("store:\n  backend: sqlite\nlogging:\n  level: DEBUG\n")
    monkeypatch.setenv("REMEDIATION_LOG_LEVEL", "WARNING")

    config = load_config_with_overrides(str(config_file))

    assert config == {"store_backend": "sqlite", "log_level": "WARNING"}


def test_load_config_with_overrides_missing_explicit_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config_with_overrides(str(tmp_path / "missing.yaml"))
