#!/usr/bin/env python3
"""
Kiosk Config Helper Tool

Creates a sample client configuration and validates existing ones.

Examples:
  python tools/config_helper.py sample --out config.json
  python tools/config_helper.py validate config.json
"""

import argparse
import json
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from examsync.config_loader import create_sample_config
from examsync.models import ClientConfig


def validate_config_file(config_path: Path) -> bool:
    """Validate an existing configuration file."""
    print("="*60)
    print("CONFIG VALIDATOR")
    print("="*60)
    print(f"\nValidating: {config_path}\n")

    if not config_path.exists():
        print(f"Error: File '{config_path}' not found.")
        return False

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        config = ClientConfig.from_dict(data)

        print("Configuration:")
        print(f"  Supabase URL: {config.supabase_url or 'Not set'}")
        print(f"  Supabase key: {'set' if config.supabase_key else 'Not set'}")
        print(f"  Request timeout: {config.request_timeout_seconds}s")
        print(f"  Probe: {config.network_monitoring.probe_url} every "
              f"{config.network_monitoring.probe_interval_seconds}s while offline")
        print(f"  Retry: {config.retry.max_attempts} attempts, {config.retry.base_delay_seconds}s "
              f"x{config.retry.factor} (+/-{config.retry.jitter:.0%})")
        print(f"  Queue: {config.offline_queue.path} "
              f"(max {config.offline_queue.max_retries} retries, "
              f"{'encrypted' if config.offline_queue.key_file else 'plaintext'})")
        print(f"  Sessions: {config.session.default_max_attempts} attempts, "
              f"{config.session.default_duration_minutes} minutes by default")
        print()

        is_valid, error_message = config.validate()

        if is_valid:
            print("✓ Configuration is VALID!")
            return True
        else:
            print(f"✗ Configuration is INVALID!")
            print(f"  Error: {error_message}")
            return False

    except json.JSONDecodeError as e:
        print(f"✗ Invalid JSON: {e}")
        return False
    except (TypeError, ValueError, AttributeError) as e:
        print(f"✗ Error: {e}")
        return False


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Create or validate exam client configuration files.")
    sub = parser.add_subparsers(dest="command", required=True)
    sample = sub.add_parser("sample", help="Write a sample config.json")
    sample.add_argument("--out", default="config.json", help="Output path (default: config.json)")
    sample.add_argument("--force", action="store_true", help="Overwrite an existing file")
    validate = sub.add_parser("validate", help="Validate an existing config file")
    validate.add_argument("path", nargs="?", default="config.json")
    args = parser.parse_args()

    if args.command == "sample":
        out = Path(args.out)
        if out.exists() and not args.force:
            print(f"Error: '{out}' exists. Use --force to overwrite.")
            return 1
        create_sample_config(out)
        return 0

    return 0 if validate_config_file(Path(args.path)) else 1


if __name__ == "__main__":
    sys.exit(main())
