"""
Tests for configuration loading and validation.
"""

import json

import pytest

from examsync.config_loader import ENV_SUPABASE_KEY, ENV_SUPABASE_URL, create_sample_config, load_config
from examsync.errors import ConfigError
from examsync.models import ClientConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv(ENV_SUPABASE_URL, raising=False)
    monkeypatch.delenv(ENV_SUPABASE_KEY, raising=False)


def write_config(tmp_path, data):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestLoadConfig:
    """Test loading configuration files."""

    def test_missing_file_uses_defaults(self, tmp_path, capsys):
        config = load_config(tmp_path / "missing.json")

        assert config == ClientConfig.default()
        assert "not found" in capsys.readouterr().out

    def test_full_file(self, tmp_path):
        path = write_config(tmp_path, {
            "supabase_url": "https://project.supabase.co",
            "supabase_key": "anon",
            "request_timeout_seconds": 7,
            "network_monitoring": {"probe_url": "https://exams.example.com/favicon.ico", "probe_interval_seconds": 15},
            "retry": {"max_attempts": 4, "base_delay_seconds": 0.5},
            "offline_queue": {"path": "queue.json", "max_retries": 3},
            "session": {"default_duration_minutes": 45},
        })

        config = load_config(path)

        assert config.supabase_url == "https://project.supabase.co"
        assert config.request_timeout_seconds == 7.0
        assert config.network_monitoring.probe_interval_seconds == 15
        assert config.network_monitoring.probe_timeout_seconds == 5.0
        assert config.retry.max_attempts == 4
        assert config.retry.factor == 2.0
        assert config.offline_queue.max_retries == 3
        assert config.session.default_duration_minutes == 45
        assert config.session.default_max_attempts == 2

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = write_config(tmp_path, {"supabase_url": "https://file.supabase.co", "supabase_key": "file"})
        monkeypatch.setenv(ENV_SUPABASE_URL, "https://env.supabase.co")
        monkeypatch.setenv(ENV_SUPABASE_KEY, "env-key")

        config = load_config(path)

        assert config.supabase_url == "https://env.supabase.co"
        assert config.supabase_key == "env-key"

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{broken", encoding="utf-8")

        with pytest.raises(ConfigError, match="Invalid JSON"):
            load_config(path)

    def test_not_an_object(self, tmp_path):
        path = write_config(tmp_path, [1, 2, 3])

        with pytest.raises(ConfigError, match="JSON object"):
            load_config(path)

    def test_bad_number(self, tmp_path):
        path = write_config(tmp_path, {"request_timeout_seconds": "soon"})

        with pytest.raises(ConfigError, match="Invalid value"):
            load_config(path)

    def test_config_error_is_value_error(self, tmp_path):
        path = write_config(tmp_path, {"retry": {"max_attempts": 0}})

        with pytest.raises(ValueError):
            load_config(path)


class TestValidate:
    """Test configuration consistency checks."""

    @pytest.mark.parametrize("data, message", [
        ({"supabase_url": "project.supabase.co"}, "http(s) URL"),
        ({"request_timeout_seconds": 0}, "request_timeout_seconds"),
        ({"network_monitoring": {"probe_interval_seconds": 0}}, "probe_interval_seconds"),
        ({"retry": {"max_attempts": 0}}, "max_attempts"),
        ({"retry": {"factor": 0.5}}, "factor"),
        ({"retry": {"jitter": 1.5}}, "jitter"),
        ({"offline_queue": {"max_retries": 0}}, "max_retries"),
        ({"session": {"default_duration_minutes": 600}}, "default_duration_minutes"),
        ({"progress": {"max_age_hours": 0}}, "max_age_hours"),
    ])
    def test_invalid_values(self, data, message):
        is_valid, error = ClientConfig.from_dict(data).validate()

        assert is_valid is False
        assert message in error

    def test_default_is_valid(self):
        assert ClientConfig.default().validate() == (True, "")


class TestSampleConfig:
    """Test sample config generation."""

    def test_sample_config_loads(self, tmp_path):
        path = tmp_path / "sample.json"

        create_sample_config(path)
        config = load_config(path)

        assert config.supabase_url == "https://your-project.supabase.co"
        assert config.offline_queue.key_file is None
        assert config.retry.max_attempts == 3
        assert config.progress.directory == "exam_progress"
        assert config.progress.max_age_hours == 24
