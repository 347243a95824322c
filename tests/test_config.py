from pathlib import Path

import pytest
import yaml
from routinekit.config import (
    RoutineConfig,
    RoutinekitConfig,
    coerce_config,
    get_routinekit_home,
    load_config,
)
from routinekit.errors import ConfigurationError


class TestRoutineConfig:

    def test_defaults(self):
        config = RoutineConfig()
        assert config.max_retries == 3
        assert config.retry_delay_ms == 1000
        assert config.timeout_ms == 30000

    def test_partial_override(self):
        config = RoutineConfig.from_dict({"retry_delay_ms": 5})
        assert config == RoutineConfig(max_retries=3, retry_delay_ms=5, timeout_ms=30000)

    def test_from_dict_on_base(self):
        base = RoutineConfig(max_retries=5)
        config = RoutineConfig.from_dict({"timeout_ms": 10}, base=base)
        assert config.max_retries == 5
        assert config.timeout_ms == 10

    @pytest.mark.parametrize("kwargs", [
        {"max_retries": 0},
        {"retry_delay_ms": -1},
        {"timeout_ms": 0},
        {"timeout_ms": 1.5},
        {"max_retries": True},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigurationError):
            RoutineConfig(**kwargs)

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError, match="Unknown routine config keys: maxRetries"):
            RoutineConfig.from_dict({"maxRetries": 2})

    def test_non_string_key(self):
        with pytest.raises(ConfigurationError, match="Unknown routine config keys: 1"):
            RoutineConfig.from_dict({1: 2})

    def test_retry_delay_seconds(self):
        assert RoutineConfig(retry_delay_ms=250).retry_delay_seconds == pytest.approx(0.25)

    def test_linear_backoff(self):
        config = RoutineConfig(retry_delay_ms=100)
        assert config.delay_before_retry(1) == pytest.approx(0.1)
        assert config.delay_before_retry(2) == pytest.approx(0.2)
        assert config.delay_before_retry(3) == pytest.approx(0.3)

    def test_merged_is_a_copy(self):
        config = RoutineConfig()
        merged = config.merged(max_retries=1)
        assert merged.max_retries == 1
        assert config.max_retries == 3

    def test_coerce(self):
        config = RoutineConfig(max_retries=2)
        assert coerce_config(config) is config
        assert coerce_config(None) == RoutineConfig()
        assert coerce_config({"max_retries": 2}) == config


def test_get_routinekit_home_default(monkeypatch):
    monkeypatch.delenv("ROUTINEKIT_HOME", raising=False)
    assert get_routinekit_home() == Path("~/.config/routinekit").expanduser()


def test_get_routinekit_home_env_var(monkeypatch, tmp_path):
    custom_home = tmp_path / "custom_home"
    monkeypatch.setenv("ROUTINEKIT_HOME", str(custom_home))
    assert get_routinekit_home() == custom_home


def test_load_config_without_file_uses_defaults(routinekit_home):
    cfg = load_config()
    assert isinstance(cfg, RoutinekitConfig)
    assert cfg.routine_defaults == RoutineConfig()
    assert cfg.definitions_dir == routinekit_home / "definitions"
    assert cfg.get_log_level() == "INFO"
    assert cfg.get_log_file_path() is None


def test_load_config_explicit_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="Configuration file not found"):
        load_config(tmp_path / "nope.yaml")


def test_load_config_valid(routinekit_home, tmp_path):
    routinekit_home.mkdir()
    config_data = {
        "defaults": {"max_retries": 5, "timeout_ms": 2000},
        "definitions_dir": str(tmp_path / "defs"),
        "logging": {"level": "debug", "format": "structured", "console": False,
                    "output": str(tmp_path / "logs" / "run-{date}.log")},
    }
    (routinekit_home / "config.yaml").write_text(yaml.dump(config_data))

    cfg = load_config()
    assert cfg.routine_defaults == RoutineConfig(max_retries=5, timeout_ms=2000)
    assert cfg.definitions_dir == tmp_path / "defs"
    assert cfg.get_log_level() == "DEBUG"
    assert cfg.get_log_format() == "structured"
    assert cfg.should_log_to_console() is False
    log_path = cfg.get_log_file_path()
    assert log_path.parent == tmp_path / "logs"
    assert "{date}" not in log_path.name


def test_load_config_empty_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    with pytest.raises(ConfigurationError, match="empty"):
        load_config(path)


def test_load_config_invalid_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("defaults: [unclosed")
    with pytest.raises(ConfigurationError, match="Invalid YAML"):
        load_config(path)


def test_load_config_invalid_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"defaults": {"max_retries": 0}}))
    with pytest.raises(ConfigurationError, match="max_retries"):
        load_config(path)


def test_load_config_logging_not_a_mapping(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"logging": "x"}))
    with pytest.raises(ConfigurationError, match="`logging` must be a mapping"):
        load_config(path)
