"""
Kiosk sync agent: keeps the exam client running so that submissions queued
while the kiosk was offline are sent as soon as the backend is reachable.
"""

import argparse
import sys
import time
from pathlib import Path

from .client import ExamClient
from .config_loader import load_config
from .errors import ConfigError
from .event_log import EventLog


class SyncAgent:
    """Command-line wrapper around ExamClient."""

    def __init__(self, sleep=time.sleep):
        self.sleep = sleep
        self.client = None
        self.running = False

    def run(self, argv=None) -> int:
        """Main application entry point."""
        parser = argparse.ArgumentParser(
            description="Exam submission sync agent",
            formatter_class=argparse.RawDescriptionHelpFormatter
        )
        parser.add_argument(
            "--config",
            help="Path to client configuration file (default: config.json in executable directory)"
        )
        parser.add_argument(
            "--offline",
            action="store_true",
            help="Start in offline mode and wait for the liveness probe to find the backend"
        )
        parser.add_argument(
            "--verbose",
            action="store_true",
            help="Echo event log lines to the console"
        )
        args = parser.parse_args(argv)

        try:
            config = load_config(Path(args.config) if args.config else None)
        except ConfigError as e:
            print(f"[ERROR] {e}")
            return 1

        if not config.supabase_url:
            print("[ERROR] supabase_url is not configured (set it in config.json or EXAMSYNC_SUPABASE_URL)")
            return 1

        event_log = EventLog(Path(config.log_path), echo=args.verbose)
        self.client = ExamClient(config, initially_online=not args.offline, event_log=event_log)

        print("=" * 60)
        print("EXAM SUBMISSION SYNC AGENT")
        print("=" * 60)
        print(f"Backend:  {config.supabase_url}")
        print(f"Queue:    {config.offline_queue.path} ({len(self.client.queue)} pending)")
        print(f"Log file: {config.log_path}")
        print("\nPress Ctrl+C to stop.\n")

        self.running = True
        self.client.start()
        try:
            while self.running:
                self.sleep(1)
        except KeyboardInterrupt:
            print("\n[i] Stopping sync agent...")
        finally:
            self.running = False
            self.client.stop()

        remaining = len(self.client.queue)
        if remaining:
            print(f"[!] {remaining} submission(s) still queued; they will be sent on next start.")
        else:
            print("[OK] No pending submissions")
        return 0


def main():
    """Entry point for the sync agent."""
    agent = SyncAgent()
    sys.exit(agent.run())


if __name__ == "__main__":
    main()
