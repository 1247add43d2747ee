"""
Category resolution against the knowledge store.

Lookups try the HTS code first, then fall back to matching the product name
against category labels and example products. None of these functions raise
on a miss; they return None.
"""

import logging
import re
from typing import Iterable, Optional

from .knowledge_store import KnowledgeStore
from .models import CategoryComplianceRule, CategoryFactoryVettingHints

logger = logging.getLogger(__name__)

_NON_HTS_CHARS = re.compile(r"[^0-9.]")


def normalize_hts_code(code: str) -> str:
    return _NON_HTS_CHARS.sub("", code or "")


def _matches_market(rule: CategoryComplianceRule, market: Optional[str]) -> bool:
    if not market or not rule.target_markets:
        return True
    wanted = market.lower()
    for target in rule.target_markets:
        target = target.lower()
        if wanted in target or target in wanted:
            return True
    return False


def _hts_matches(query: str, codes: Iterable[str]) -> bool:
    for code in codes:
        normalized = normalize_hts_code(code)
        if not normalized:
            continue
        if query.startswith(normalized) or normalized.startswith(query):
            return True
    return False


def get_compliance_by_hts_code(
    store: KnowledgeStore, hts_code: str, market: Optional[str] = None
) -> Optional[CategoryComplianceRule]:
    query = normalize_hts_code(hts_code)
    if not query:
        return None

    for rule in store.rules:
        if not _matches_market(rule, market):
            continue
        if _hts_matches(query, rule.typical_hts_codes):
            return rule
    return None


def get_compliance_by_product_name(
    store: KnowledgeStore, product_name: str, market: Optional[str] = None
) -> Optional[CategoryComplianceRule]:
    """First rule whose label or example products contain any significant token of the name."""
    tokens = [t for t in (product_name or "").lower().split() if len(t) > 2]
    if not tokens:
        return None

    for rule in store.rules:
        if not _matches_market(rule, market):
            continue
        haystack = " ".join([rule.label, *rule.example_products]).lower()
        if any(token in haystack for token in tokens):
            return rule
    return None


def get_compliance_by_category(
    store: KnowledgeStore, category_id: str, market: Optional[str] = None
) -> Optional[CategoryComplianceRule]:
    rule = store.get_rule(category_id)
    if rule is None or not _matches_market(rule, market):
        return None
    return rule


def get_factory_vetting_by_category(
    store: KnowledgeStore, category_id: str
) -> Optional[CategoryFactoryVettingHints]:
    return store.get_vetting(category_id)


def resolve(
    store: KnowledgeStore,
    product_name: Optional[str],
    hts_code: Optional[str],
    market: Optional[str] = None,
) -> Optional[CategoryComplianceRule]:
    rule = None
    if hts_code:
        rule = get_compliance_by_hts_code(store, hts_code, market)
        if rule is not None:
            logger.debug(f"Resolved category {rule.id} from HTS code {hts_code}")
            return rule

    if product_name:
        rule = get_compliance_by_product_name(store, product_name, market)
        if rule is not None:
            logger.debug(f"Resolved category {rule.id} from product name '{product_name}'")

    return rule
