"""
Regulation Pattern Analytics
============================
Groups compliance rules by the exact set of regulation identifiers they
mention, and groups usage by HTS heading (first four digits), to surface
recurring compliance profiles.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

from .knowledge_store import DATA_DIR, write_document
from .models import (
    CategoryComplianceRule,
    CategoryUsageEvent,
    HtsPattern,
    RegulationPattern,
    RegulationPatternsData,
)

logger = logging.getLogger(__name__)

PATTERNS_OUTPUT_PATH = DATA_DIR / "analytics" / "regulation_patterns.json"
MIN_COMBO_FREQUENCY = 2
KEY_MAX_LENGTH = 100

REGULATION_IDENTIFIER_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in [
        r"\bCPSIA\b",
        r"\bFDA\b",
        r"\bUL\s*\d+",
        r"\bEN\s*71\b",
        r"\bREACH\b",
        r"\bLFGB\b",
        r"\bUN38\.3\b",
        r"\bUN\s*38\.3\b",
        r"\bASTM\s*F\d+",
        r"\bFCC\b",
        r"\bNRTL\b",
        r"\bCE\b",
        r"\bRoHS\b",
        r"\bProp\s*65\b",
        r"\bCA\s*Prop\s*65\b",
        r"\bDOE\b",
        r"\bTPCH\b",
        r"\bISO\s*\d+",
        r"\b16\s*CFR\b",
        r"\b21\s*CFR\b",
        r"\b47\s*CFR\b",
    ]
]

HTS_PREFIX_NOTES = {
    "9503": "Toys and children's products frequently require CPSIA + EN71 testing.",
    "7323": "Stainless steel household articles often require FDA food contact regulations.",
    "8516": "Electric heating appliances typically require UL/ETL certification and FCC compliance.",
}


def extract_regulation_identifiers(text: str) -> List[str]:
    """'ASTM F963-17 and 16 CFR 1501' -> ['16CFR', 'ASTMF963']"""
    identifiers: Set[str] = set()
    for pattern in REGULATION_IDENTIFIER_PATTERNS:
        for match in pattern.findall(text or ""):
            normalized = re.sub(r"\s+", "", match).upper()
            if len(normalized) > 2:
                identifiers.add(normalized)
    return sorted(identifiers)


def extract_regulations_from_rule(rule: CategoryComplianceRule) -> List[str]:
    identifiers: Set[str] = set()
    for text in [*rule.required_regulations, *rule.testing_requirements]:
        identifiers.update(extract_regulation_identifiers(text))
    return sorted(identifiers)


def extract_hts_prefix(hts_code: Optional[str]) -> Optional[str]:
    match = re.match(r"^(\d{4})", hts_code or "")
    return match.group(1) if match else None


@dataclass
class CategoryFeatures:
    category_id: str
    base_regulations: List[str]
    testing_requirements: List[str]
    high_risk_flags: List[str]
    usage_count: int = 0
    average_risk_score: Optional[float] = None
    hts_prefixes: Set[str] = field(default_factory=set)


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def build_category_features(
    rules: Iterable[CategoryComplianceRule], events: Iterable[CategoryUsageEvent]
) -> Dict[str, CategoryFeatures]:
    features: Dict[str, CategoryFeatures] = {}
    for rule in rules:
        features[rule.id] = CategoryFeatures(
            category_id=rule.id,
            base_regulations=extract_regulations_from_rule(rule),
            testing_requirements=list(rule.testing_requirements),
            high_risk_flags=list(rule.high_risk_flags),
        )

    risk_scores: Dict[str, List[float]] = {}
    for event in events:
        feature = features.get(event.category_id) if event.category_id else None
        if feature is None:
            continue
        feature.usage_count += 1
        if event.risk_score is not None:
            risk_scores.setdefault(event.category_id, []).append(event.risk_score)
        prefix = extract_hts_prefix(event.hts_code)
        if prefix:
            feature.hts_prefixes.add(prefix)

    for category_id, scores in risk_scores.items():
        features[category_id].average_risk_score = _mean(scores)
    return features


def generate_regulation_patterns(
    features: Dict[str, CategoryFeatures], min_frequency: int = MIN_COMBO_FREQUENCY
) -> List[RegulationPattern]:
    combos: Dict[str, Dict] = {}
    for category_id, feature in features.items():
        if not feature.base_regulations:
            continue
        key = "|".join(sorted(feature.base_regulations))
        combo = combos.setdefault(
            key,
            {"categories": [], "risk_scores": [], "testing": Counter(), "flags": Counter()},
        )
        if category_id not in combo["categories"]:
            combo["categories"].append(category_id)
        if feature.average_risk_score is not None:
            combo["risk_scores"].append(feature.average_risk_score)
        for requirement in feature.testing_requirements:
            combo["testing"][requirement[:KEY_MAX_LENGTH]] += 1
        for flag in feature.high_risk_flags:
            combo["flags"][flag[:KEY_MAX_LENGTH]] += 1

    patterns: List[RegulationPattern] = []
    for key, combo in combos.items():
        if len(combo["categories"]) < min_frequency:
            continue
        patterns.append(
            RegulationPattern(
                regulation_combo=key.split("|"),
                categories_count=len(combo["categories"]),
                avg_risk_score=_mean(combo["risk_scores"]),
                example_categories=combo["categories"][:5],
                common_testing_requirements=[k for k, _ in combo["testing"].most_common(5)],
                common_high_risk_flags=[k for k, _ in combo["flags"].most_common(5)],
            )
        )

    patterns.sort(key=lambda p: p.categories_count, reverse=True)
    return patterns


def generate_hts_patterns(features: Dict[str, CategoryFeatures]) -> List[HtsPattern]:
    prefixes: Dict[str, Dict] = {}
    for category_id, feature in features.items():
        for prefix in sorted(feature.hts_prefixes):
            data = prefixes.setdefault(prefix, {"categories": set(), "regulations": Counter(), "risk_scores": []})
            data["categories"].add(category_id)
            for regulation in feature.base_regulations:
                data["regulations"][regulation] += 1
            if feature.average_risk_score is not None:
                data["risk_scores"].append(feature.average_risk_score)

    patterns = [
        HtsPattern(
            hts_prefix=prefix,
            categories_count=len(data["categories"]),
            dominant_regulations=[r for r, _ in data["regulations"].most_common(3)],
            avg_risk_score=_mean(data["risk_scores"]),
            notes=HTS_PREFIX_NOTES.get(prefix),
        )
        for prefix, data in prefixes.items()
    ]
    patterns.sort(key=lambda p: p.categories_count, reverse=True)
    return patterns


def build_regulation_patterns_document(
    rules: Iterable[CategoryComplianceRule],
    events: Iterable[CategoryUsageEvent],
    min_frequency: int = MIN_COMBO_FREQUENCY,
    now: Optional[datetime] = None,
) -> RegulationPatternsData:
    now = now or datetime.now(timezone.utc)
    features = build_category_features(rules, events)
    by_combo = generate_regulation_patterns(features, min_frequency=min_frequency)
    by_prefix = generate_hts_patterns(features)
    return RegulationPatternsData(
        generated_at=now.isoformat().replace("+00:00", "Z"),
        pattern_count=len(by_combo) + len(by_prefix),
        by_regulation_combo=by_combo,
        by_hts_prefix=by_prefix,
    )


def write_regulation_patterns(
    data: RegulationPatternsData, path: Union[str, Path] = PATTERNS_OUTPUT_PATH
) -> Path:
    path = Path(path)
    write_document(path, data.model_dump(exclude_none=True))
    logger.info(f"Wrote {data.pattern_count} regulation patterns to {path}")
    return path
