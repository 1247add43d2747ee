#!/usr/bin/env python3
"""
Bulk category knowledge generation.

Usage:
    python bulk_generate.py                  # reads categories.txt
    python bulk_generate.py my_categories.txt --workers 3
"""

import argparse
import logging
import sys

from nexsupply.bulk_runner import (
    BULK_CONCURRENCY,
    BULK_TASK_DELAY,
    DEFAULT_CATEGORIES_FILE,
    MAX_RETRIES,
    ParallelCategoryProcessor,
    bulk_log_path,
    read_categories,
    setup_logging,
)

logger = logging.getLogger("bulk_generate")


def main():
    parser = argparse.ArgumentParser(description="Generate knowledge for every category in a file")
    parser.add_argument("categories_file", nargs="?", default=DEFAULT_CATEGORIES_FILE,
                        help=f"One category description per line (default: {DEFAULT_CATEGORIES_FILE})")
    parser.add_argument("--workers", type=int, default=BULK_CONCURRENCY, help="Concurrent workers")
    parser.add_argument("--delay", type=float, default=BULK_TASK_DELAY, help="Seconds to wait before each task")
    parser.add_argument("--max-retries", type=int, default=MAX_RETRIES, help="Attempts per category")
    parser.add_argument("--no-commit", action="store_true", help="Skip git commits")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    log_file = bulk_log_path()
    setup_logging(log_file, debug=args.debug)
    logger.info(f"Bulk generation started. Log file: {log_file}")

    categories = read_categories(args.categories_file)
    if not categories:
        logger.info("No categories to process. Exiting.")
        return 0

    processor = ParallelCategoryProcessor(
        max_workers=args.workers,
        task_delay=args.delay,
        max_retries=args.max_retries,
        commit=not args.no_commit,
    )
    summary = processor.run(categories)

    logger.info("--- Bulk Generation Summary ---")
    logger.info(f"Success: {summary.success_count}")
    logger.info(f"Failed: {summary.failed_count}")
    logger.info(f"Completed file: {args.categories_file}")
    if summary.failed:
        logger.info(f"Failed categories appended to {processor.failed_file}")

    return 0 if summary.failed_count == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
