#!/usr/bin/env python3
"""
Inspect durable checkpoints of one actor.

Run: python scripts/inspect_checkpoints.py <actor_id> [--clear] [--requeue OPERATION_ID]

Lists queued operations, dead letters and resumable sessions from the store
configured via STORAGE_BACKEND / STORAGE_PATH / DATABASE_URL.

Exit codes:
  0 - Nothing dead-lettered
  1 - Dead letters present
  2 - Store could not be opened
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

try:
    from offline_queue.config import settings
    from offline_queue.services.dead_letter_queue import DeadLetterQueue
    from offline_queue.services.errors import StorageFailure
    from offline_queue.services.request_queue import RequestQueue
    from offline_queue.services.session_checkpoint import SessionCheckpointManager
    from offline_queue.services.storage import create_store
except ImportError as e:
    print(f"ERROR: Failed to import required modules: {e}")
    print("Make sure you're running from the project root and dependencies are installed.")
    sys.exit(2)


def format_report(actor_id: str, queued: list, dead_letters: list, sessions: list) -> str:
    """
    Format checkpoint listing as human-readable text

    Args:
        actor_id: Inspected actor
        queued: QueuedOperation list
        dead_letters: DeadLetterRecord list
        sessions: SessionCheckpoint list

    Returns:
        Formatted report string
    """
    lines = []
    lines.append("=" * 80)
    lines.append(f"CHECKPOINTS FOR ACTOR {actor_id}")
    lines.append("=" * 80)
    lines.append("")

    lines.append(f"QUEUED OPERATIONS ({len(queued)})")
    lines.append("-" * 80)
    for op in sorted(queued, key=lambda o: o.created_at):
        lines.append(f"  {op.operation_id}")
        lines.append(f"    Request:      {op.request.method.upper()} {op.request.url}")
        lines.append(f"    Retries:      {op.retry_count}")
        lines.append(f"    Next attempt: {op.next_eligible_at.isoformat()}")
        lines.append(f"    Last failure: {op.failure.kind} - {op.failure.message}")
    lines.append("")

    lines.append(f"DEAD LETTERS ({len(dead_letters)})")
    lines.append("-" * 80)
    for record in dead_letters:
        op = record.operation
        lines.append(f"  {op.operation_id}")
        lines.append(f"    Request:      {op.request.method.upper()} {op.request.url}")
        lines.append(f"    Reason:       {record.reason} after {op.retry_count} retries")
        lines.append(f"    Last failure: {op.failure.kind} - {op.failure.message}")
        lines.append(f"    Since:        {record.dead_lettered_at.isoformat()}")
    lines.append("")

    lines.append(f"SESSIONS ({len(sessions)})")
    lines.append("-" * 80)
    for checkpoint in sessions:
        streams = ", ".join(
            f"{stream_id}:{len(fragments)}" for stream_id, fragments in checkpoint.fragments_by_stream.items()
        ) or "none"
        lines.append(f"  {checkpoint.session_id}")
        lines.append(f"    Step:         {checkpoint.current_step_index + 1}/{len(checkpoint.steps_snapshot)}")
        lines.append(f"    Results:      {len(checkpoint.step_results)}")
        lines.append(f"    Fragments:    {streams}")
        lines.append(f"    Evaluation:   {checkpoint.evaluation.status.value} (job {checkpoint.evaluation.job_id})")
        lines.append(f"    Updated:      {checkpoint.updated_at.isoformat()}")
    lines.append("")
    lines.append("=" * 80)

    return "\n".join(lines)


def main():
    """Main inspection script entry point"""
    parser = argparse.ArgumentParser(description="Inspect offline queue checkpoints of one actor")
    parser.add_argument("actor_id", help="Actor (user) id")
    parser.add_argument("--clear", action="store_true", help="Remove all queued operations of the actor")
    parser.add_argument("--requeue", metavar="OPERATION_ID", help="Manually retry a dead-lettered operation")
    args = parser.parse_args()

    try:
        store = create_store(settings)
    except (ValueError, StorageFailure) as e:
        print(f"ERROR: Cannot open {settings.storage_backend} checkpoint store: {e}")
        sys.exit(2)

    dead_letters = DeadLetterQueue(store)
    queue = RequestQueue(store, dead_letters=dead_letters)
    sessions = SessionCheckpointManager(store)

    if args.requeue:
        operation = dead_letters.requeue(args.actor_id, args.requeue, queue)
        if operation is None:
            print(f"No dead letter {args.requeue} for actor {args.actor_id}")
        else:
            print(f"Re-queued {operation.operation_id}, due now")

    if args.clear:
        removed = queue.clear(args.actor_id)
        print(f"Removed {removed} queued operations")

    records = dead_letters.list(args.actor_id)
    print(format_report(args.actor_id, queue.list_all(args.actor_id), records, sessions.list_sessions(args.actor_id)))

    sys.exit(1 if records else 0)


if __name__ == "__main__":
    main()
