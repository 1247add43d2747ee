"""
Category enrichment: lab testing cost table, initial-order budget and
regulation reasoning.
"""

import time

import pytest

from nexsupply.llm_client import LLMError
from nexsupply.models import CategoryComplianceRule, ProductAnalysis
from nexsupply.models import TestingCost as LabTest
from nexsupply.order_cost import (
    DEFAULT_MOQ,
    calculate_initial_order_cost,
    estimate_initial_order_cost,
    parse_currency,
)
from nexsupply.reasoning import RegulationReasoner, complete_reasoning
from nexsupply.testing_costs import estimate_testing_cost

from conftest import TEETHER_ANALYSIS, TEETHER_RULE


def _rule(*regulations):
    return CategoryComplianceRule(id="x", label="X", required_regulations=list(regulations))


# ----------------------------------------------------------------------
# Testing costs
# ----------------------------------------------------------------------

def test_cpsia_maps_to_three_tests():
    costs = estimate_testing_cost(_rule("CPSIA"))
    assert [c.test for c in costs] == [
        "CPSIA Lead Content",
        "CPSIA Phthalates",
        "CPSIA Tracking Label Review",
    ]
    assert (costs[0].low, costs[0].high) == (150, 250)


def test_only_hyphenated_keys_match():
    assert estimate_testing_cost(_rule("ASTM F963", "FDA 21 CFR")) == []

    costs = estimate_testing_cost(_rule("astm-f963-17", "fda-21-cfr 177"))
    assert [c.test for c in costs][-1] == "FDA 21 CFR Food-Grade Material Testing"
    assert len(costs) == 4


def test_duplicates_removed_in_first_seen_order():
    costs = estimate_testing_cost(_rule("fda-21-cfr", "CPSIA", "CPSIA Section 101", "fda-21-cfr 177.2600"))
    names = [c.test for c in costs]
    assert names[0] == "FDA 21 CFR Food-Grade Material Testing"
    assert len(names) == len(set(names)) == 4


def test_unknown_regulations_contribute_nothing():
    assert estimate_testing_cost(_rule("REACH", "LFGB")) == []
    assert estimate_testing_cost(None) == []


def test_estimate_is_pure():
    rule = CategoryComplianceRule.model_validate(TEETHER_RULE)
    first = estimate_testing_cost(rule)
    first[0].high = 0
    second = estimate_testing_cost(rule)
    assert second[0].high == 250
    assert rule.required_regulations == ["CPSIA", "ASTM F963", "FDA 21 CFR"]


# ----------------------------------------------------------------------
# Initial order cost
# ----------------------------------------------------------------------

def test_parse_currency():
    assert parse_currency("$2.91") == 2.91
    assert parse_currency("USD 1,250.50") == 1250.50
    assert parse_currency("n/a") == 0.0
    assert parse_currency(None) == 0.0


def test_teether_example_budget():
    costs = [LabTest(test="a", low=500, high=970)]
    result = calculate_initial_order_cost("$2.91", costs)

    assert result.moq == DEFAULT_MOQ == 500
    assert result.unit_cost == 2.91
    assert result.testing_cost_total == 970
    assert result.minimum_order_cost == 1455.00
    assert result.total_initial_cost == 2425.00


def test_unparseable_landed_cost_counts_as_zero():
    result = calculate_initial_order_cost("call for quote", [LabTest(test="a", low=1, high=100)])
    assert result.minimum_order_cost == 0.0
    assert result.total_initial_cost == 100.0


def test_estimate_from_analysis_uses_high_end_testing():
    analysis = ProductAnalysis.model_validate(TEETHER_ANALYSIS)
    analysis.testing_cost_estimate = [
        LabTest(test="a", low=100, high=200),
        LabTest(test="b", low=300, high=770),
    ]
    result = estimate_initial_order_cost(analysis)
    assert result.testing_cost_total == 970
    assert result.total_initial_cost == 2425.00


def test_initial_order_cost_serialises_camel_case():
    result = calculate_initial_order_cost("$1.00", [])
    assert set(result.model_dump(by_alias=True)) == {
        "testingCostTotal", "unitCost", "moq", "minimumOrderCost", "totalInitialCost",
    }


# ----------------------------------------------------------------------
# Regulation reasoning
# ----------------------------------------------------------------------

@pytest.fixture
def teether_rule():
    return CategoryComplianceRule.model_validate(TEETHER_RULE)


def test_reasoning_covers_every_regulation_in_rule_order(fake_llm, teether_rule):
    llm = fake_llm({"reasoning": [
        {"regulation": "fda 21 cfr", "reason": "Mouth contact."},
        {"regulation": "CPSIA", "reason": "Children's product."},
    ]})
    reasoner = RegulationReasoner(llm=llm, timeout=5)

    result = reasoner.generate("Silicone Baby Teether", "9503.00.00", teether_rule)

    assert [r.regulation for r in result] == ["CPSIA", "ASTM F963", "FDA 21 CFR"]
    assert result[0].reason == "Children's product."
    assert result[2].reason == "Mouth contact."
    assert "ASTM F963" in result[1].reason
    assert llm.calls[0]["requires_json"] is True
    reasoner.shutdown()


def test_reasoning_returns_none_when_model_fails(fake_llm, teether_rule):
    reasoner = RegulationReasoner(llm=fake_llm(LLMError("boom")), timeout=5)
    assert reasoner.generate("Teether", "9503", teether_rule) is None
    reasoner.shutdown()


def test_reasoning_returns_none_on_unparseable_output(fake_llm, teether_rule):
    reasoner = RegulationReasoner(llm=fake_llm("not json"), timeout=5)
    assert reasoner.generate("Teether", "9503", teether_rule) is None
    reasoner.shutdown()


@pytest.mark.parametrize("payload", [{"reasoning": None}, {"reasoning": "CPSIA applies"}, {}, []])
def test_reasoning_without_a_list_falls_back_to_defaults(fake_llm, teether_rule, payload):
    reasoner = RegulationReasoner(llm=fake_llm(payload), timeout=5)

    result = reasoner.generate("Teether", "9503", teether_rule)

    assert [r.regulation for r in result] == ["CPSIA", "ASTM F963", "FDA 21 CFR"]
    assert all("required regulation" in r.reason for r in result)
    reasoner.shutdown()


def test_reasoning_with_malformed_items_returns_none(fake_llm, teether_rule):
    reasoner = RegulationReasoner(llm=fake_llm({"reasoning": ["CPSIA", 3]}), timeout=5)
    assert reasoner.generate("Teether", "9503", teether_rule) is None
    reasoner.shutdown()


def test_reasoning_times_out(teether_rule):
    class SlowLLM:
        def send_request(self, *args, **kwargs):
            time.sleep(1.0)
            return '{"reasoning": []}'

    reasoner = RegulationReasoner(llm=SlowLLM(), timeout=0.05)
    assert reasoner.generate("Teether", "9503", teether_rule) is None
    reasoner.shutdown()


def test_complete_reasoning_fills_gaps(teether_rule):
    result = complete_reasoning([], teether_rule)
    assert len(result) == 3
    assert all(r.reason for r in result)
