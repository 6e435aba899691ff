"""
Configuration loader for the exam session client.

Handles loading and validating client configuration files.
"""

import json
import os
import sys
from pathlib import Path
from typing import Optional

from .errors import ConfigError
from .models import ClientConfig

ENV_SUPABASE_URL = "EXAMSYNC_SUPABASE_URL"
ENV_SUPABASE_KEY = "EXAMSYNC_SUPABASE_KEY"


def load_config(config_path: Optional[Path] = None) -> ClientConfig:
    """
    Load client configuration from a JSON file.

    Args:
        config_path: Path to the configuration file. If None, looks for
                    'config.json' next to the executable/package.

    Returns:
        ClientConfig object with validated configuration

    Raises:
        ConfigError: If config is invalid
    """
    if config_path is None:
        if getattr(sys, 'frozen', False):
            exe_dir = Path(sys.executable).parent
        else:
            exe_dir = Path(__file__).parent.parent

        config_path = exe_dir / "config.json"

    config_path = Path(config_path)
    if not config_path.exists():
        print(f"Warning: Config file '{config_path}' not found. Using default configuration.")
        config = ClientConfig.default()
    else:
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in config file: {e}")
        except OSError as e:
            raise ConfigError(f"Error reading config file: {e}")

        if not isinstance(data, dict):
            raise ConfigError("Config file must contain a JSON object")

        try:
            config = ClientConfig.from_dict(data)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value in config file: {e}")

    if os.environ.get(ENV_SUPABASE_URL):
        config.supabase_url = os.environ[ENV_SUPABASE_URL]
    if os.environ.get(ENV_SUPABASE_KEY):
        config.supabase_key = os.environ[ENV_SUPABASE_KEY]

    is_valid, error_message = config.validate()
    if not is_valid:
        raise ConfigError(f"Invalid configuration: {error_message}")

    return config


def create_sample_config(output_path: Path):
    """
    Create a sample configuration file for kiosk operators.

    Args:
        output_path: Path where to save the sample config
    """
    sample_config = {
        "supabase_url": "https://your-project.supabase.co",
        "supabase_key": "public-anon-key",
        "request_timeout_seconds": 10,
        "log_path": "examsync.log",
        "network_monitoring": {
            "probe_url": "https://exams.example.com/favicon.ico",
            "probe_interval_seconds": 30,
            "probe_timeout_seconds": 5
        },
        "retry": {
            "max_attempts": 3,
            "base_delay_seconds": 1.0,
            "factor": 2.0,
            "jitter": 0.1
        },
        "offline_queue": {
            "path": "pending_submissions.json",
            "max_retries": 5,
            "key_file": None,
            "replay_pause_seconds": 1.0
        },
        "session": {
            "default_max_attempts": 2,
            "default_duration_minutes": 30
        },
        "progress": {
            "dir": "exam_progress",
            "max_age_hours": 24
        },
        "_comment": "Sample exam client configuration. Adjust values as needed.",
        "_instructions": {
            "supabase_url": "Base URL of the Supabase project (or set EXAMSYNC_SUPABASE_URL)",
            "supabase_key": "API key sent with every request (or set EXAMSYNC_SUPABASE_KEY)",
            "network_monitoring.probe_url": "Same-origin resource used as a liveness check while offline",
            "retry": "Backoff for network failures: delay = base * factor^(attempt-1), +/- jitter",
            "offline_queue.key_file": "Optional Fernet key (queue_admin.py keygen) for queue and progress files",
            "session.default_duration_minutes": "Exam window used when the exam has no duration",
            "progress.max_age_hours": "Saved answers older than this are discarded instead of recovered"
        }
    }

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(sample_config, f, indent=2)

    print(f"Sample configuration created at: {output_path}")
