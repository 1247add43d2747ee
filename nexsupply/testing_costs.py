from typing import Dict, List, Optional

from .models import CategoryComplianceRule, TestingCost

# USD, per test, typical third-party lab quotes
TEST_COSTS: Dict[str, TestingCost] = {
    "CPSIA Lead Content": TestingCost(test="CPSIA Lead Content", low=150, high=250),
    "CPSIA Phthalates": TestingCost(test="CPSIA Phthalates", low=300, high=450),
    "CPSIA Tracking Label": TestingCost(test="CPSIA Tracking Label Review", low=100, high=200),
    "ASTM F963 Mechanical": TestingCost(test="ASTM F963 Mechanical Hazards", low=180, high=320),
    "ASTM F963 Flammability": TestingCost(test="ASTM F963 Flammability", low=120, high=200),
    "ASTM F963 Heavy Metals": TestingCost(test="ASTM F963 Heavy Metals", low=250, high=400),
    "FDA 21 CFR Food Grade": TestingCost(test="FDA 21 CFR Food-Grade Material Testing", low=400, high=700),
}

REGULATION_TESTS: Dict[str, List[str]] = {
    "cpsia": ["CPSIA Lead Content", "CPSIA Phthalates", "CPSIA Tracking Label"],
    "astm-f963": ["ASTM F963 Mechanical", "ASTM F963 Flammability", "ASTM F963 Heavy Metals"],
    "fda-21-cfr": ["FDA 21 CFR Food Grade"],
}


def _tests_for_regulation(regulation: str) -> List[str]:
    lowered = regulation.lower()
    names: List[str] = []
    for key, tests in REGULATION_TESTS.items():
        if key in lowered:
            names.extend(tests)
    return names


def estimate_testing_cost(rule: Optional[CategoryComplianceRule]) -> List[TestingCost]:
    """
    Map a category's required regulations to lab tests and their cost ranges.

    Tests are de-duplicated and returned in the order the regulations first
    reach them. Regulations with no known tests contribute nothing.
    """
    if rule is None:
        return []

    seen = set()
    estimates: List[TestingCost] = []
    for regulation in rule.required_regulations:
        for name in _tests_for_regulation(regulation):
            if name in seen:
                continue
            seen.add(name)
            estimates.append(TEST_COSTS[name].model_copy())
    return estimates
