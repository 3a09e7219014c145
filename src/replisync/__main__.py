"""
Main entrypoint: runs the sync scheduler, or a single maintenance command.

FastAPI runs separately under uvicorn (for the status/trigger endpoints).

Usage:
    python -m replisync                   # starts the scheduler (slave mode syncs every minute)
    python -m replisync sync              # runs one sync cycle and prints the result
    python -m replisync status            # prints per-entity cursors and change-log stats
    python -m replisync cleanup --days 7  # deletes old completed change-log entries
    python -m replisync reset [entity]    # forgets pull cursors
    python -m replisync retry [entity]    # requeues failed change-log entries
    uvicorn replisync.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import argparse
import asyncio
import json
import logging

from replisync.config import get_settings

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


async def _run_scheduler() -> None:
    from replisync.scheduler.jobs import build_scheduler
    from replisync.sync.service import get_sync_service

    settings = get_settings()
    scheduler = build_scheduler(get_sync_service())
    scheduler.start()
    logger.info(
        "Scheduler started (mode=%s, sync every %d min, cleanup at %02d:00 UTC)",
        settings.mode,
        settings.sync_interval_minutes,
        settings.cleanup_hour,
    )

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        logger.info("Goodbye.")


async def _run_once() -> dict:
    from replisync.sync.service import get_sync_service

    result = await get_sync_service().run_cycle()
    return result.to_dict()


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="replisync", description="Master/slave data sync")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("sync", help="Run one sync cycle")
    sub.add_parser("status", help="Show sync status")
    cleanup = sub.add_parser("cleanup", help="Delete old completed change-log entries")
    cleanup.add_argument("--days", type=int, default=None, help="Age threshold (default: retention_days)")
    reset = sub.add_parser("reset", help="Reset pull cursors")
    reset.add_argument("entity", nargs="?", default=None)
    retry = sub.add_parser("retry", help="Requeue failed change-log entries")
    retry.add_argument("entity", nargs="?", default=None)
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = _parse_args(argv)

    if args.command is None:
        asyncio.run(_run_scheduler())
        return

    from replisync.sync.service import get_sync_service

    if args.command == "sync":
        output = asyncio.run(_run_once())
    elif args.command == "status":
        output = get_sync_service().status()
    elif args.command == "cleanup":
        output = {"deleted": get_sync_service().cleanup_old_logs(args.days)}
    elif args.command == "reset":
        output = {"reset": get_sync_service().reset_cursors(args.entity)}
    else:
        output = {"requeued": get_sync_service().change_log.reset_failed(args.entity)}

    print(json.dumps(output, indent=2, default=str))


if __name__ == "__main__":
    main()
