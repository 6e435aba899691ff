#!/usr/bin/env python3
"""
queue_admin.py - Inspect and maintain the offline submission queue.

Examples:
  # Show every queued submission (exhausted ones are flagged)
  python tools/queue_admin.py --config config.json list

  # Send everything that still has retries left
  python tools/queue_admin.py --config config.json replay

  # Retry one exhausted-or-not submission by id
  python tools/queue_admin.py --config config.json retry exam1_user1_1714557600000

  # Drop records that used all retries / drop everything
  python tools/queue_admin.py --config config.json purge-exhausted
  python tools/queue_admin.py --config config.json purge-all --yes

  # Generate a Fernet key for offline_queue.key_file (no config needed)
  python tools/queue_admin.py keygen --out queue.key
"""

import argparse
import sys
from pathlib import Path

from cryptography.fernet import Fernet

sys.path.insert(0, str(Path(__file__).parent.parent))
from examsync.client import ExamClient
from examsync.config_loader import load_config
from examsync.errors import ExamSyncError, QueueExhaustion
from examsync.event_log import EventLog
from examsync.offline_queue import DurableSubmissionQueue


def _keygen(output_file: str) -> int:
    """Write a new Fernet key for the queue and saved progress."""
    try:
        with open(output_file, 'wb') as f:
            f.write(Fernet.generate_key())
    except OSError as e:
        print(f"[ERROR] Error generating key: {e}", file=sys.stderr)
        return 1

    print(f"[OK] Encryption key written to {output_file}")
    print("[!] Keep it next to the kiosk config only. Never commit it to version control.")
    print("[i] Queued answers and saved progress written with this key can only be read with it;")
    print("    flush the queue with 'replay' before switching keys.")
    return 0


def _list(queue: DurableSubmissionQueue) -> int:
    items = queue.pending()
    if not items:
        print("[OK] Queue is empty")
        return 0

    print(f"[QUEUE] {len(items)} submission(s)")
    for item in items:
        flag = "EXHAUSTED" if item.is_exhausted else "retryable"
        if item.is_psychometric:
            kind = "psychometric"
            answered = f"{len(item.responses)} response(s)"
        else:
            kind = "anonymous" if item.is_anonymous_session else "registered"
            answered = f"{len(item.answers)} answer(s)"
        print(f"  - {item.id}  [{flag} {item.retry_count}/{item.max_retries}]")
        print(f"      exam={item.exam_id} user={item.user_id} session={item.session_id or '-'} ({kind})")
        print(f"      queued at {item.timestamp}, {answered}")
    return 0


def _replay(client: ExamClient) -> int:
    if not client.monitor.check_now():
        print("[ERROR] Backend is not reachable; nothing was sent")
        return 1

    summary = client.coordinator.replay_pending()
    print(f"[OK] Sent: {len(summary.succeeded)}  Failed: {len(summary.failed)}  "
          f"Exhausted: {len(summary.exhausted)}")
    return 0 if not summary.failed else 1


def _retry(client: ExamClient, submission_id: str, force: bool) -> int:
    if force:
        item = client.queue.get(submission_id)
        if item is None:
            print(f"[ERROR] No queued submission with id {submission_id}")
            return 1
        try:
            client.coordinator.reconcile(item)
        except ExamSyncError as e:
            print(f"[ERROR] Submission still failing: {e}")
            return 1
        client.queue.dequeue_on_success(submission_id)
        print(f"[OK] Submission {submission_id} sent")
        return 0

    try:
        sent = client.coordinator.retry_one(submission_id)
    except KeyError:
        print(f"[ERROR] No queued submission with id {submission_id}")
        return 1
    except QueueExhaustion as e:
        print(f"[ERROR] {e}. Use --force to send it anyway.")
        return 1

    print(f"[OK] Submission {submission_id} sent" if sent else f"[ERROR] Submission {submission_id} failed again")
    return 0 if sent else 1


def main():
    parser = argparse.ArgumentParser(description="Inspect and maintain the offline submission queue.")
    parser.add_argument("--config", help="Path to client config (.json)")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="List queued submissions")
    sub.add_parser("replay", help="Send all retryable submissions")
    retry = sub.add_parser("retry", help="Send one submission by id")
    retry.add_argument("submission_id")
    retry.add_argument("--force", action="store_true", help="Send even if its retries are exhausted")
    sub.add_parser("purge-exhausted", help="Delete submissions that used all retries")
    purge_all = sub.add_parser("purge-all", help="Delete every queued submission")
    purge_all.add_argument("--yes", action="store_true", help="Confirm deletion")
    keygen = sub.add_parser("keygen", help="Generate a Fernet key for offline_queue.key_file")
    keygen.add_argument("--out", required=True, help="Output file path for the key (e.g., queue.key)")
    args = parser.parse_args()

    if args.command == "keygen":
        sys.exit(_keygen(args.out))

    try:
        config = load_config(Path(args.config) if args.config else None)
        event_log = EventLog(Path(config.log_path))

        if args.command in ("list", "purge-exhausted", "purge-all"):
            queue = DurableSubmissionQueue.from_config(config.offline_queue, session_logger=event_log.log)
            if args.command == "list":
                sys.exit(_list(queue))
            if args.command == "purge-exhausted":
                print(f"[OK] Removed {queue.purge_exhausted()} exhausted submission(s)")
                sys.exit(0)
            if not args.yes:
                print("[ERROR] purge-all deletes answers that were never sent. Re-run with --yes.")
                sys.exit(1)
            print(f"[OK] Removed {queue.purge_all()} submission(s)")
            sys.exit(0)

        client = ExamClient(config, initially_online=False, event_log=event_log)
        try:
            if args.command == "replay":
                code = _replay(client)
            else:
                code = _retry(client, args.submission_id, args.force)
        finally:
            client.store.close()
    except (ExamSyncError, OSError) as e:
        print(f"[ERROR] {e}")
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
