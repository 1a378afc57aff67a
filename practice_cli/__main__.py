"""CLI interface for the adaptive practice scheduler.

Usage:
    python -m practice_cli regenerate                     Rebuild every device's queue once
    python -m practice_cli regenerate --every 900         Rebuild on a timer until interrupted
    python -m practice_cli queue DEVICE                   Show a device's current queue
    python -m practice_cli record DEVICE TASK correct 4200
                                                          Record a practice attempt
"""

import argparse
import asyncio
import logging

from practice_backend.config import SchedulerConfig, settings
from practice_backend.database import async_session, engine
from practice_backend.models import Base
from practice_backend.srs.attempts import PracticeAttempt, record_attempt
from practice_backend.srs.cache import get_or_build_queue
from practice_backend.srs.fallback import rank_fallback
from practice_backend.srs.queue import QueueItem
from practice_backend.srs.regeneration import RegenerationSummary, get_regenerator

logger = logging.getLogger("practice_cli")


async def ensure_db() -> None:
    """Create tables if they don't exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def format_summary(summary: RegenerationSummary) -> str:
    if not summary.enabled:
        return "  Adaptive queue is disabled (set PRACTICE_ADAPTIVE_QUEUE_ENABLED=1)"
    line = (
        f"  Rebuilt {summary.rebuilt}/{summary.devices} device queues"
        f" in {summary.duration_ms:.0f} ms (run {summary.job_run_id})"
    )
    if summary.failed:
        line += f"\n  Failed: {', '.join(summary.failed_devices)}"
    return line


async def run_regeneration(timeout: float | None, reason: str | None) -> RegenerationSummary:
    """Run one regeneration batch, optionally capped by a timeout for the whole batch."""
    regenerator = get_regenerator()
    return await asyncio.wait_for(
        regenerator.regenerate_all(triggered_by="cli", reason=reason),
        timeout=timeout,
    )


async def cmd_regenerate(args: argparse.Namespace) -> None:
    """Regenerate all queues once, or every ``--every`` seconds."""
    await ensure_db()
    while True:
        try:
            summary = await run_regeneration(args.timeout, args.reason)
            print(format_summary(summary))
        except TimeoutError:
            logger.error("Regeneration did not finish within %.0f s", args.timeout)
            if not args.every:
                raise
        if not args.every:
            return
        await asyncio.sleep(args.every)


async def cmd_queue(args: argparse.Namespace) -> None:
    """Print the device's queue, rebuilding it if stale."""
    await ensure_db()
    config = SchedulerConfig.from_settings(settings)

    async with async_session() as db:
        if not config.adaptive_enabled:
            ranked = await rank_fallback(db, args.device, limit=config.max_queue_items, level_hint=args.level)
            print(f"  Adaptive queue disabled; fallback ranking for {args.device}:")
            for position, task in enumerate(ranked, start=1):
                print(f"  {position:>3}. {task.task_id:<30} {task.priority:.4f}")
            return

        queue = await get_or_build_queue(db, args.device, config, level_hint=args.level)

    print(f"  Queue {queue.version} for {args.device} (valid until {queue.valid_until:%Y-%m-%d %H:%M})")
    for position, item in enumerate(map(QueueItem.from_dict, queue.items), start=1):
        print(
            f"  {position:>3}. {item.task_id:<30} {item.priority:.4f}"
            f"  box {item.box}  due {item.due_at:%Y-%m-%d %H:%M}"
        )
    if not queue.items:
        print("  (empty)")


async def cmd_record(args: argparse.Namespace) -> None:
    """Record a practice attempt from the command line."""
    await ensure_db()
    config = SchedulerConfig.from_settings(settings)
    attempt = PracticeAttempt(
        device_id=args.device,
        task_id=args.task,
        result=args.result,
        response_ms=args.response_ms,
        level=args.level,
    )
    async with async_session() as db:
        outcome = await record_attempt(db, attempt, config)

    update = outcome.update
    print(
        f"  {outcome.task_id}: box {outcome.previous_box} -> {update.box},"
        f" {update.correct_attempts}/{update.total_attempts} correct,"
        f" next due {update.due_at:%Y-%m-%d %H:%M}"
    )


def main() -> None:
    """Entry point for the practice scheduler CLI."""
    parser = argparse.ArgumentParser(
        prog="practice_cli",
        description="Adaptive practice scheduler",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # regenerate
    regen_parser = subparsers.add_parser("regenerate", help="Rebuild every device's queue")
    regen_parser.add_argument("--every", type=float, default=None, help="Repeat every N seconds")
    regen_parser.add_argument("--timeout", type=float, default=None, help="Cap each batch at N seconds")
    regen_parser.add_argument("--reason", default=None, help="Free-text reason recorded on the job run")

    # queue
    queue_parser = subparsers.add_parser("queue", help="Show a device's practice queue")
    queue_parser.add_argument("device", help="Device identifier")
    queue_parser.add_argument("-l", "--level", default=None, help="Preferred CEFR level for new tasks")

    # record
    record_parser = subparsers.add_parser("record", help="Record a practice attempt")
    record_parser.add_argument("device", help="Device identifier")
    record_parser.add_argument("task", help="Task identifier")
    record_parser.add_argument("result", choices=["correct", "incorrect"])
    record_parser.add_argument("response_ms", type=int, help="Response time in milliseconds")
    record_parser.add_argument("-l", "--level", default=None, help="CEFR level of the task")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if not args.command:
        parser.print_help()
        return

    cmd_map = {
        "regenerate": cmd_regenerate,
        "queue": cmd_queue,
        "record": cmd_record,
    }

    asyncio.run(cmd_map[args.command](args))


if __name__ == "__main__":
    main()
