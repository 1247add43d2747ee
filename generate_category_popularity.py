#!/usr/bin/env python3
"""
Category popularity ranking from logs/category-usage.ndjson.

Usage:
    python generate_category_popularity.py
"""

import argparse
import sys

from nexsupply.bulk_runner import setup_logging
from nexsupply.category_popularity import POPULARITY_OUTPUT_PATH, build_popularity, write_popularity
from nexsupply.category_usage import USAGE_LOG_PATH, read_usage_events
from nexsupply.knowledge_store import KnowledgeStore


def print_summary(data) -> None:
    print("=" * 80)
    print("Category Popularity Ranking Generated")
    print("=" * 80)
    print(f"\nGenerated at:      {data.generated_at}")
    print(f"Total categories:  {data.total_categories}")

    if data.items:
        print("\n--- Top 10 Categories ---")
        for idx, item in enumerate(data.items[:10], start=1):
            print(f"\n{idx}. {item.label} ({item.category_id})")
            print(f"   Count: {item.total_count}")
            print(f"   Last seen: {item.last_seen_at}")
            if item.average_risk_score is not None:
                print(f"   Avg Risk Score: {item.average_risk_score:.1f}")
            if item.top_regulations:
                print(f"   Top Regulations: {', '.join(item.top_regulations)}")
    print("\n" + "=" * 80 + "\n")


def main():
    parser = argparse.ArgumentParser(description="Rank categories by how often they are analysed")
    parser.add_argument("--log-file", default=str(USAGE_LOG_PATH), help="Usage NDJSON log")
    parser.add_argument("--output", default=str(POPULARITY_OUTPUT_PATH), help="Output JSON path")
    args = parser.parse_args()

    setup_logging()
    try:
        events = list(read_usage_events(args.log_file))
        labels = KnowledgeStore().load().labels()
        data = build_popularity(events, labels)
        write_popularity(data, args.output)
    except OSError as e:
        print(f"Error generating category popularity ranking: {e}")
        return 1

    print_summary(data)
    return 0


if __name__ == "__main__":
    sys.exit(main())
