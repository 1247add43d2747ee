"""
Category usage log.

Every successful analysis appends one JSON object per line to
``logs/category-usage.ndjson``. The offline analytics read the same file back,
tolerating blank and malformed lines.
"""

import json
import logging
import os
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Union

from pydantic import ValidationError

from .models import CategoryUsageEvent, ProductAnalysis

logger = logging.getLogger(__name__)

LOG_DIR = Path(os.environ.get("NEXSUPPLY_LOG_DIR", "logs"))
USAGE_LOG_PATH = LOG_DIR / "category-usage.ndjson"

REGULATION_TAG_PATTERN = re.compile(
    r"\b(CPSIA|FDA|UL|EN71|REACH|LFGB|UN38\.3|ASTM|FCC|NRTL|CE|RoHS|CA\s*Prop\s*65|Prop\s*65|DOE|TPCH)\b",
    re.IGNORECASE,
)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def extract_regulation_tags(analysis: ProductAnalysis) -> List[str]:
    texts: List[str] = []
    if analysis.compliance_hints is not None:
        texts.extend(analysis.compliance_hints.required_regulations)
        texts.extend(analysis.compliance_hints.testing_requirements)
    for item in analysis.regulation_reasoning or []:
        texts.append(item.regulation)

    tags = set()
    for text in texts:
        for match in REGULATION_TAG_PATTERN.findall(text):
            tags.add(re.sub(r"\s+", "", match).upper())
    return sorted(tags)


def build_category_usage_event(
    raw_input: str, analysis: ProductAnalysis, category_id: Optional[str] = None
) -> CategoryUsageEvent:
    market = None
    if analysis.compliance_hints is not None and analysis.compliance_hints.target_markets:
        market = analysis.compliance_hints.target_markets[0]

    return CategoryUsageEvent(
        timestamp=utc_now_iso(),
        raw_input=raw_input,
        product_name=analysis.product_name,
        hts_code=analysis.hts_code,
        category_id=category_id,
        market=market,
        regulation_tags=extract_regulation_tags(analysis) or None,
        risk_score=analysis.risk_assessment.overall_score,
        feasibility_score=analysis.estimate_confidence,
    )


class CategoryUsageLogger:
    def __init__(self, path: Union[str, Path] = USAGE_LOG_PATH):
        self.path = Path(path)
        self._lock = threading.Lock()

    def log(self, event: CategoryUsageEvent) -> None:
        """Append one event. Failures are logged and dropped; usage logging never breaks a request."""
        line = event.to_json_line()
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            logger.error(f"Failed to write category usage event to {self.path}: {e}")


def read_usage_events(path: Union[str, Path] = USAGE_LOG_PATH) -> Iterator[CategoryUsageEvent]:
    path = Path(path)
    if not path.exists():
        logger.warning(f"Usage log not found: {path}")
        return

    with open(path, "r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                raw = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"Skipping malformed line {line_number} in {path}")
                continue
            if not isinstance(raw, dict) or not raw.get("timestamp") or not raw.get("raw_input"):
                logger.warning(f"Skipping incomplete event on line {line_number} in {path}")
                continue
            try:
                yield CategoryUsageEvent.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Skipping invalid event on line {line_number} in {path}: {e.error_count()} errors")
