"""
Project Portal Core - Maintenance CLI

Out-of-band operations of the integrity layer:

    python maintenance.py init-db
    python maintenance.py backfill [--legacy-file users.json]
    python maintenance.py reconcile [--no-write-counters]

Reports are printed as JSON. Exit codes:
    0  success (reconcile: no irregularities)
    1  integrity-layer failure
    2  reconcile found irregularities, or backfill had failed records
"""

import asyncio
import json
import sys
import argparse
import logging

from config import get_settings
from logging_config import setup_logging
from database import init_db, dispose_db, get_session_factory
from services.container import build_services
from utils.errors import IntegrityLayerError

logger = logging.getLogger(__name__)


async def cmd_init_db(args) -> int:
    await init_db()
    return 0


async def cmd_backfill(args) -> int:
    await init_db()
    services = build_services(get_session_factory())

    if args.legacy_file:
        with open(args.legacy_file, "r", encoding="utf-8") as f:
            records = json.load(f)
        await services.backfill.stage_legacy_records(records)

    report = await services.backfill.run_backfill()
    print(json.dumps(report.to_dict(), indent=2, default=str))
    return 2 if report.failed else 0


async def cmd_reconcile(args) -> int:
    await init_db()
    services = build_services(get_session_factory())
    write_counters = False if args.no_write_counters else None

    report = await services.reconciler.reconcile(write_counters=write_counters)
    print(json.dumps(report.to_dict(), indent=2, default=str))
    return 0 if report.consistent else 2


COMMANDS = {
    "init-db": cmd_init_db,
    "backfill": cmd_backfill,
    "reconcile": cmd_reconcile,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Project Portal Core maintenance")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables")

    backfill = sub.add_parser("backfill", help="Migrate legacy users into role partitions")
    backfill.add_argument("--legacy-file", help="JSON array of legacy user records to stage first")

    reconcile = sub.add_parser("reconcile", help="Recompute counters and report irregularities")
    reconcile.add_argument("--no-write-counters", action="store_true",
                           help="Do not write counters onto administrator records")
    return parser


async def run(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return await COMMANDS[args.command](args)
    except IntegrityLayerError as e:
        logger.error(f"{args.command} failed: {e.message}")
        print(json.dumps(e.to_dict(), indent=2, default=str))
        return 1
    finally:
        await dispose_db()


def main(argv=None) -> int:
    settings = get_settings()
    # Reports go to stdout, logs to stderr
    setup_logging(
        level=settings.LOG_LEVEL,
        json_format=settings.LOG_JSON,
        service_name="portal-maintenance",
        stream=sys.stderr,
    )
    return asyncio.run(run(argv))


if __name__ == "__main__":
    sys.exit(main())
