#!/usr/bin/env python3
"""
Automated Category Knowledge Builder

Research -> Verify -> Build records -> Merge -> Commit for one category.

Usage:
    python auto_category.py "US baby teether toy (silicone)"
    python auto_category.py "stainless steel water bottle" --no-commit
    python auto_category.py "LED desk lamp" --json
"""

import argparse
import json
import sys

from nexsupply.bulk_runner import setup_logging
from nexsupply.knowledge_builder import CategoryKnowledgeBuilder, KnowledgeBuildError
from nexsupply.llm_client import LLMError


def print_summary(outcome) -> None:
    parsed = outcome.knowledge.parsed
    compliance = outcome.knowledge.compliance
    factory = outcome.knowledge.factory
    merge = outcome.merge

    print("\n" + "=" * 80)
    print("Category Knowledge Generation Complete")
    print("=" * 80)
    print(f"\nCategory ID:       {parsed.category_id}")
    print(f"Label:             {parsed.category_label}")
    print(f"Target Market:     {parsed.target_market}")
    print("\n--- Compliance Data ---")
    print(f"Regulations:       {len(compliance.required_regulations)} found")
    print(f"HTS Codes:         {', '.join(compliance.typical_hts_codes) or 'None'}")
    print(f"Testing Reqs:      {len(compliance.testing_requirements)} items")
    print(f"Risk Flags:        {len(compliance.high_risk_flags)} items")
    print(f"Reference Links:   {len(compliance.reference_links)} links")
    print("\n--- Factory Vetting Data ---")
    print(f"Supplier Types:    {len(factory.typical_supplier_types)} types")
    print(f"Must-Have Certs:   {len(factory.must_have_certificates)} certificates")
    print(f"Nice-to-Have:      {len(factory.nice_to_have_certificates)} certificates")
    print(f"Sample Questions:  {len(factory.sample_questions_to_factory)} questions")
    print(f"Red Flags:         {len(factory.common_red_flags)} flags")
    print(f"Alibaba Filters:   {len(factory.recommended_alibaba_filters)} filters")
    print("\n--- File Status ---")
    print(f"Compliance File:   {merge.compliance} -> {merge.compliance_path}")
    print(f"Factory File:      {merge.factory} -> {merge.factory_path}")
    print(f"Git commit:        {'yes' if outcome.committed else 'no'}")
    print("\n" + "=" * 80 + "\n")


def main():
    parser = argparse.ArgumentParser(description="Generate compliance and factory vetting knowledge for a category")
    parser.add_argument("description", nargs="+", help="Category description, e.g. \"US baby teether toy (silicone)\"")
    parser.add_argument("--no-commit", action="store_true", help="Skip the git commit")
    parser.add_argument("--json", action="store_true", help="Print the generated records as JSON")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    setup_logging(debug=args.debug)
    input_text = " ".join(args.description).strip()
    if not input_text:
        print("Error: Category description is required.")
        return 1

    print(f"\nInput: \"{input_text}\"\n")

    try:
        outcome = CategoryKnowledgeBuilder().run(input_text, commit=not args.no_commit)
    except (KnowledgeBuildError, LLMError) as e:
        print(f"Error generating category knowledge: {e}")
        return 1

    print_summary(outcome)
    if args.json:
        print(json.dumps(
            {
                "compliance": outcome.knowledge.compliance.to_dict(),
                "factory": outcome.knowledge.factory.to_dict(),
            },
            indent=2,
            ensure_ascii=False,
        ))
    return 0


if __name__ == "__main__":
    sys.exit(main())
