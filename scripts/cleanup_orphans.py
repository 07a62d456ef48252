"""
Batch cleanup of statement records whose stored files are gone.

Usage:
    cleanup-orphans --dry-run     # Preview what would be deleted
    cleanup-orphans --execute     # Actually perform the cleanup
    cleanup-orphans --verify      # Check sync status only
    cleanup-orphans --status      # Quick sampled estimate
"""

import argparse
import json
import logging
import sys

from config.logging_config import configure_logging
from config.settings import settings
from core.errors import DatabaseError, StorageError
from core.report import log_summary
from integrations.runtime import open_orchestrator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_DRIFT = 2


def build_parser():
    parser = argparse.ArgumentParser(
        prog="cleanup-orphans",
        description="Reconcile statement, file and transaction records against blob storage.",
    )
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--dry-run", action="store_true", help="Preview what would be deleted")
    mode.add_argument("--execute", action="store_true", help="Actually perform the cleanup")
    mode.add_argument("--verify", action="store_true", help="Check sync status only; exit 2 when drift is found")
    mode.add_argument("--status", action="store_true", help="Totals and a sampled orphan estimate")

    parser.add_argument("--batch-size", type=int, default=settings.BATCH_SIZE)
    parser.add_argument("--max-records", type=int, default=settings.MAX_RECORDS)
    parser.add_argument("--scope", default="all", help="all | statements | files (statementsOnly/filesOnly accepted)")
    parser.add_argument("--include-blobs", action="store_true", help="Also report/remove stored objects with no file record")
    parser.add_argument("--timeout", type=float, default=settings.TIMEOUT_SECONDS, help="Abort after this many seconds")
    parser.add_argument("--store-report", action="store_true", help="Persist the run report to MongoDB")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON on stdout")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        with open_orchestrator(settings) as (orchestrator, runs):
            if args.status:
                status = orchestrator.status(settings.STATUS_SAMPLE_SIZE)
                print(json.dumps(status, indent=2))
                return EXIT_OK

            result = orchestrator.run(
                batch_size=args.batch_size,
                dry_run=not args.execute,
                cleanup_scope=args.scope,
                max_records=args.max_records,
                include_blobs=args.include_blobs,
                timeout=args.timeout,
            )

            if not result.success:
                logger.error(f"Cleanup failed: {result.error}")
                if args.json:
                    print(json.dumps(result.to_dict(), indent=2, default=str))
                return EXIT_FAILED

            report = result.report
            log_summary(report)
            if args.store_report:
                runs.store(report)
            if args.json:
                print(json.dumps(result.to_dict(), indent=2, default=str))

            if args.verify:
                if report.orphans:
                    logger.warning(f"Found {len(report.orphans)} orphaned records")
                    logger.warning("Run with --dry-run to preview or --execute to clean up")
                    return EXIT_DRIFT
                logger.info("All records are properly synchronized!")

            return EXIT_OK

    except (DatabaseError, StorageError, ValueError) as e:
        logger.error(f"Error during cleanup: {e}")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
