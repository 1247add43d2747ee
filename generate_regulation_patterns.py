#!/usr/bin/env python3
"""
Regulation pattern extraction across categories and usage.

Usage:
    python generate_regulation_patterns.py
    python generate_regulation_patterns.py --min-frequency 3
"""

import argparse
import sys

from nexsupply.bulk_runner import setup_logging
from nexsupply.category_usage import USAGE_LOG_PATH, read_usage_events
from nexsupply.knowledge_store import KnowledgeStore
from nexsupply.regulation_patterns import (
    MIN_COMBO_FREQUENCY,
    PATTERNS_OUTPUT_PATH,
    build_regulation_patterns_document,
    write_regulation_patterns,
)


def main():
    parser = argparse.ArgumentParser(description="Find recurring regulation combinations and HTS clusters")
    parser.add_argument("--log-file", default=str(USAGE_LOG_PATH), help="Usage NDJSON log")
    parser.add_argument("--output", default=str(PATTERNS_OUTPUT_PATH), help="Output JSON path")
    parser.add_argument("--min-frequency", type=int, default=MIN_COMBO_FREQUENCY,
                        help="Minimum categories sharing a combination")
    args = parser.parse_args()

    setup_logging()
    store = KnowledgeStore().load()
    if not store.rules:
        print(f"Error: no compliance rules found in {store.compliance_path}")
        return 1

    try:
        events = list(read_usage_events(args.log_file))
        data = build_regulation_patterns_document(store.rules, events, min_frequency=args.min_frequency)
        write_regulation_patterns(data, args.output)
    except OSError as e:
        print(f"Error generating regulation patterns: {e}")
        return 1

    print("=" * 80)
    print("Regulation Patterns Generated")
    print("=" * 80)
    print(f"\nCategories analysed:     {len(store.rules)}")
    print(f"Usage events:            {len(events)}")
    print(f"Regulation combos:       {len(data.by_regulation_combo)}")
    print(f"HTS prefix patterns:     {len(data.by_hts_prefix)}")

    for idx, pattern in enumerate(data.by_regulation_combo[:5], start=1):
        print(f"\n{idx}. {' + '.join(pattern.regulation_combo)}")
        print(f"   Categories: {pattern.categories_count} (e.g. {', '.join(pattern.example_categories)})")
        if pattern.avg_risk_score is not None:
            print(f"   Avg Risk Score: {pattern.avg_risk_score:.1f}")
    print("\n" + "=" * 80 + "\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
