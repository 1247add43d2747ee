"""
Category popularity ranking built from the usage log.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .knowledge_store import DATA_DIR, write_document
from .models import CategoryPopularityData, CategoryPopularityItem, CategoryUsageEvent

logger = logging.getLogger(__name__)

POPULARITY_OUTPUT_PATH = DATA_DIR / "analytics" / "category_popularity.json"
TOP_REGULATIONS = 5


@dataclass
class CategoryAggregate:
    count: int
    first_seen: str
    last_seen: str
    risk_scores: List[float] = field(default_factory=list)
    feasibility_scores: List[float] = field(default_factory=list)
    regulations: Counter = field(default_factory=Counter)


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def fallback_label(category_id: str) -> str:
    """'baby_teether' -> 'Baby Teether'"""
    return re.sub(r"\b\w", lambda m: m.group().upper(), category_id.replace("_", " "))


def aggregate_by_category(events: Iterable[CategoryUsageEvent]) -> Dict[str, CategoryAggregate]:
    aggregates: Dict[str, CategoryAggregate] = {}
    for event in events:
        if not event.category_id:
            continue

        agg = aggregates.get(event.category_id)
        if agg is None:
            agg = CategoryAggregate(count=0, first_seen=event.timestamp, last_seen=event.timestamp)
            aggregates[event.category_id] = agg

        agg.count += 1
        if event.timestamp < agg.first_seen:
            agg.first_seen = event.timestamp
        if event.timestamp > agg.last_seen:
            agg.last_seen = event.timestamp

        if event.risk_score is not None:
            agg.risk_scores.append(event.risk_score)
        if event.feasibility_score is not None:
            agg.feasibility_scores.append(event.feasibility_score)
        for tag in event.regulation_tags or []:
            agg.regulations[tag] += 1
    return aggregates


def build_popularity(
    events: Iterable[CategoryUsageEvent],
    labels: Optional[Dict[str, str]] = None,
    now: Optional[datetime] = None,
) -> CategoryPopularityData:
    labels = labels or {}
    now = now or datetime.now(timezone.utc)

    items: List[CategoryPopularityItem] = []
    for category_id, agg in aggregate_by_category(events).items():
        # most_common keeps first-seen order among equal counts
        top_regulations = [tag for tag, _ in agg.regulations.most_common(TOP_REGULATIONS)]
        items.append(
            CategoryPopularityItem(
                category_id=category_id,
                label=labels.get(category_id) or fallback_label(category_id),
                total_count=agg.count,
                first_seen_at=agg.first_seen,
                last_seen_at=agg.last_seen,
                average_risk_score=_mean(agg.risk_scores),
                average_feasibility_score=_mean(agg.feasibility_scores),
                top_regulations=top_regulations,
            )
        )

    items.sort(key=lambda item: (item.total_count, item.last_seen_at), reverse=True)
    return CategoryPopularityData(
        generated_at=now.isoformat().replace("+00:00", "Z"),
        total_categories=len(items),
        items=items,
    )


def write_popularity(data: CategoryPopularityData, path: Union[str, Path] = POPULARITY_OUTPUT_PATH) -> Path:
    path = Path(path)
    write_document(path, data.model_dump(exclude_none=True))
    logger.info(f"Wrote popularity ranking for {data.total_categories} categories to {path}")
    return path
