#!/usr/bin/env python3
"""
Top-N Category Auto-Reinforcement

Re-runs the knowledge builder for the most requested categories so their
compliance and factory vetting data stays fresh.

Usage:
    python reinforce_top_categories.py        # top 50
    python reinforce_top_categories.py 20
"""

import argparse
import logging
import sys

from nexsupply.bulk_runner import (
    DEFAULT_TOP_N,
    POPULARITY_FILE,
    REINFORCE_CONCURRENCY,
    REINFORCE_LOG_FILE,
    REINFORCE_TASK_DELAY,
    ParallelCategoryProcessor,
    build_seed_string,
    load_popularity,
    select_top,
    setup_logging,
)

logger = logging.getLogger("reinforce_top_categories")


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("N must be a positive number")
    if number <= 0:
        raise argparse.ArgumentTypeError("N must be a positive number")
    return number


def main():
    parser = argparse.ArgumentParser(description="Reinforce knowledge for the top-N most popular categories")
    parser.add_argument("n", nargs="?", type=positive_int, default=DEFAULT_TOP_N,
                        help=f"Number of top categories to reinforce (default: {DEFAULT_TOP_N})")
    parser.add_argument("--popularity-file", default=str(POPULARITY_FILE), help="Popularity ranking JSON")
    parser.add_argument("--no-commit", action="store_true", help="Skip git commits")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    setup_logging(REINFORCE_LOG_FILE, debug=args.debug)
    logger.info(f"=== Starting reinforcement, target: top {args.n} categories ===")

    try:
        popularity = load_popularity(args.popularity_file)
    except (FileNotFoundError, ValueError) as e:
        logger.error(str(e))
        return 1

    if not popularity.items:
        logger.warning("No categories found in popularity ranking. Run generate_category_popularity.py first.")
        return 0

    top = select_top(popularity.items, args.n)
    seeds = [build_seed_string(item) for item in top]
    logger.info(f"Selected top {len(seeds)} of {popularity.total_categories} categories")

    processor = ParallelCategoryProcessor(
        max_workers=REINFORCE_CONCURRENCY,
        task_delay=REINFORCE_TASK_DELAY,
        commit=not args.no_commit,
    )
    summary = processor.run(seeds)

    logger.info("=== Reinforcement Summary ===")
    logger.info(f"Total processed: {summary.total}")
    logger.info(f"Successful: {summary.success_count}")
    logger.info(f"Failed: {summary.failed_count}")
    for result in summary.results:
        if not result.success:
            logger.info(f"  - {result.description}: {result.error}")
    logger.info(f"Log file: {REINFORCE_LOG_FILE}")

    return 0 if summary.failed_count == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
