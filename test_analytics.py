"""
Offline analytics: category popularity and regulation patterns.
"""

import json
from datetime import datetime, timezone

from nexsupply.category_popularity import build_popularity, fallback_label, write_popularity
from nexsupply.models import CategoryComplianceRule, CategoryUsageEvent
from nexsupply.regulation_patterns import (
    build_category_features,
    build_regulation_patterns_document,
    extract_hts_prefix,
    extract_regulation_identifiers,
    extract_regulations_from_rule,
    generate_regulation_patterns,
    write_regulation_patterns,
)

from conftest import TEETHER_RULE

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _event(category_id, day, risk=None, feasibility=None, tags=None, hts=None):
    return CategoryUsageEvent(
        timestamp=f"2024-05-{day:02d}T10:00:00Z",
        raw_input=category_id or "unknown",
        category_id=category_id,
        risk_score=risk,
        feasibility_score=feasibility,
        regulation_tags=tags,
        hts_code=hts,
    )


# ----------------------------------------------------------------------
# Popularity
# ----------------------------------------------------------------------

def test_fallback_label():
    assert fallback_label("baby_teether") == "Baby Teether"
    assert fallback_label("led_desk_lamp") == "Led Desk Lamp"


def test_popularity_aggregates_and_ranks():
    events = [
        _event("mug", 1, risk=40, tags=["FDA"]),
        _event("mug", 3, risk=60, tags=["FDA", "CAPROP65"]),
        _event("baby_teether", 2, risk=70, feasibility=80, tags=["CPSIA", "FDA"]),
        _event("baby_teether", 9, tags=["CPSIA"]),
        _event("apron", 4),
        _event(None, 5, risk=10),
    ]

    data = build_popularity(events, labels={"baby_teether": "Silicone Baby Teether"}, now=NOW)

    assert data.generated_at == "2024-06-01T12:00:00Z"
    assert data.total_categories == 3
    assert [i.category_id for i in data.items] == ["baby_teether", "mug", "apron"]

    teether, mug, apron = data.items
    assert teether.label == "Silicone Baby Teether"
    assert teether.total_count == 2
    assert teether.first_seen_at == "2024-05-02T10:00:00Z"
    assert teether.last_seen_at == "2024-05-09T10:00:00Z"
    assert teether.average_risk_score == 70
    assert teether.average_feasibility_score == 80
    assert teether.top_regulations == ["CPSIA", "FDA"]

    assert mug.label == "Mug"
    assert mug.average_risk_score == 50
    assert mug.average_feasibility_score is None
    assert mug.top_regulations == ["FDA", "CAPROP65"]

    assert apron.top_regulations == []


def test_popularity_out_of_order_timestamps():
    data = build_popularity([_event("mug", 7), _event("mug", 2), _event("mug", 5)], now=NOW)
    item = data.items[0]
    assert (item.first_seen_at, item.last_seen_at) == ("2024-05-02T10:00:00Z", "2024-05-07T10:00:00Z")


def test_popularity_top_regulations_capped_at_five():
    tags = ["A1", "B2", "C3", "D4", "E5", "F6"]
    data = build_popularity([_event("mug", 1, tags=tags)], now=NOW)
    assert data.items[0].top_regulations == tags[:5]


def test_write_popularity_omits_missing_averages(tmp_path):
    data = build_popularity([_event("apron", 4)], now=NOW)
    path = write_popularity(data, tmp_path / "analytics" / "category_popularity.json")

    item = json.loads(path.read_text())["items"][0]
    assert item["total_count"] == 1
    assert "average_risk_score" not in item


def test_empty_log_gives_empty_ranking():
    data = build_popularity([], now=NOW)
    assert data.total_categories == 0
    assert data.items == []


# ----------------------------------------------------------------------
# Regulation patterns
# ----------------------------------------------------------------------

def test_extract_identifiers_normalises():
    assert extract_regulation_identifiers("ASTM F963-17 and 16 CFR 1501") == ["16CFR", "ASTMF963"]
    assert extract_regulation_identifiers("UL 94 flammability, un 38.3 transport") == ["UL94", "UN38.3"]
    assert extract_regulation_identifiers("CA Prop 65 warning") == ["CAPROP65", "PROP65"]


def test_two_letter_identifiers_are_dropped():
    assert extract_regulation_identifiers("CE marking") == []


def test_extract_from_rule_reads_requirements_too():
    rule = CategoryComplianceRule.model_validate(TEETHER_RULE)
    assert extract_regulations_from_rule(rule) == ["16CFR", "21CFR", "ASTMF963", "CPSIA", "FDA"]


def test_extract_hts_prefix():
    assert extract_hts_prefix("9503.00.0071") == "9503"
    assert extract_hts_prefix("95") is None
    assert extract_hts_prefix(None) is None


def _rule(category_id, regulations, testing=(), flags=()):
    return CategoryComplianceRule(
        id=category_id,
        label=category_id,
        required_regulations=list(regulations),
        testing_requirements=list(testing),
        high_risk_flags=list(flags),
    )


RULES = [
    _rule("baby_teether", ["CPSIA", "FDA"], testing=["Lead testing"], flags=["Small parts"]),
    _rule("pacifier_clip", ["fda", "CPSIA"], testing=["Lead testing"], flags=["Strangulation"]),
    _rule("desk_lamp", ["UL 153", "FCC"]),
    _rule("tote_bag", []),
]


def test_combo_requires_minimum_frequency():
    features = build_category_features(RULES, [])

    patterns = generate_regulation_patterns(features)

    assert len(patterns) == 1
    pattern = patterns[0]
    assert pattern.regulation_combo == ["CPSIA", "FDA"]
    assert pattern.categories_count == 2
    assert pattern.example_categories == ["baby_teether", "pacifier_clip"]
    assert pattern.common_testing_requirements == ["Lead testing"]
    assert pattern.common_high_risk_flags == ["Small parts", "Strangulation"]
    assert pattern.avg_risk_score is None

    assert len(generate_regulation_patterns(features, min_frequency=1)) == 2


def test_features_pick_up_usage():
    events = [
        _event("baby_teether", 1, risk=60, hts="9503.00.00"),
        _event("baby_teether", 2, risk=80, hts="3924.90.56"),
        _event("unknown_category", 3, risk=10, hts="9503.00.00"),
    ]

    features = build_category_features(RULES, events)

    teether = features["baby_teether"]
    assert teether.usage_count == 2
    assert teether.average_risk_score == 70
    assert teether.hts_prefixes == {"9503", "3924"}
    assert "unknown_category" not in features


def test_document_has_combo_and_hts_sections(tmp_path):
    events = [
        _event("baby_teether", 1, risk=60, hts="9503.00.00"),
        _event("pacifier_clip", 2, risk=40, hts="9503.00.00"),
        _event("desk_lamp", 3, risk=30, hts="9405.20.60"),
    ]

    data = build_regulation_patterns_document(RULES, events, now=NOW)

    assert data.generated_at == "2024-06-01T12:00:00Z"
    assert data.by_regulation_combo[0].avg_risk_score == 50
    toys = data.by_hts_prefix[0]
    assert toys.hts_prefix == "9503"
    assert toys.categories_count == 2
    assert toys.dominant_regulations == ["CPSIA", "FDA"]
    assert toys.notes.startswith("Toys and children's products")
    lamps = data.by_hts_prefix[1]
    assert lamps.hts_prefix == "9405"
    assert lamps.notes is None
    assert data.pattern_count == len(data.by_regulation_combo) + len(data.by_hts_prefix) == 3

    path = write_regulation_patterns(data, tmp_path / "regulation_patterns.json")
    written = json.loads(path.read_text())
    assert "notes" not in written["by_hts_prefix"][1]
