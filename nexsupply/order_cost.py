import logging
import re
from typing import List, Optional

from .models import InitialOrderCost, ProductAnalysis, TestingCost

logger = logging.getLogger(__name__)

# Illustrative first-order quantity; no per-category MOQ data yet
DEFAULT_MOQ = 500

_NON_NUMERIC = re.compile(r"[^0-9.\-]")


def parse_currency(value: Optional[str]) -> float:
    """Parse a currency string such as "$2.91"; anything unparseable is 0.0."""
    cleaned = _NON_NUMERIC.sub("", value or "")
    try:
        return float(cleaned)
    except ValueError:
        logger.debug(f"Could not parse currency value {value!r}; using 0.0")
        return 0.0


def calculate_initial_order_cost(
    landed_cost: Optional[str], testing_costs: List[TestingCost], moq: int = DEFAULT_MOQ
) -> InitialOrderCost:
    testing_total = sum(cost.high for cost in testing_costs)
    unit_cost = parse_currency(landed_cost)
    minimum_order_cost = round(unit_cost * moq, 2)
    return InitialOrderCost(
        testing_cost_total=testing_total,
        unit_cost=unit_cost,
        moq=moq,
        minimum_order_cost=minimum_order_cost,
        total_initial_cost=round(minimum_order_cost + testing_total, 2),
    )


def estimate_initial_order_cost(analysis: ProductAnalysis, moq: int = DEFAULT_MOQ) -> InitialOrderCost:
    """Roll the landed unit cost and the high-end testing estimate into a first-order budget."""
    return calculate_initial_order_cost(
        analysis.landed_cost_breakdown.landed_cost,
        analysis.testing_cost_estimate or [],
        moq=moq,
    )
