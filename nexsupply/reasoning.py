import json
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .llm_client import LLMClient, LLMError, get_llm_client
from .models import CategoryComplianceRule, RegulationReason
from .prompts import REGULATION_REASONING_PROMPT, REGULATION_REASONING_SYSTEM_PROMPT

logger = logging.getLogger(__name__)

REASONING_TIMEOUT_SECONDS = float(os.environ.get("REASONING_TIMEOUT_SECONDS", "20"))


def _bullets(items: List[str]) -> str:
    return "\n".join(f"- {item}" for item in items) if items else "- (none listed)"


def default_reason(regulation: str, rule: CategoryComplianceRule) -> str:
    return f"{regulation} is listed as a required regulation for the {rule.label} category."


def complete_reasoning(
    items: List[RegulationReason], rule: CategoryComplianceRule
) -> List[RegulationReason]:
    """
    One entry per required regulation, in rule order.

    Model answers are matched case-insensitively by regulation name; any
    regulation the model skipped gets a templated reason.
    """
    by_name = {item.regulation.strip().lower(): item for item in items}
    completed: List[RegulationReason] = []
    for regulation in rule.required_regulations:
        found = by_name.get(regulation.strip().lower())
        reason = found.reason if found and found.reason.strip() else default_reason(regulation, rule)
        completed.append(RegulationReason(regulation=regulation, reason=reason))
    return completed


class RegulationReasoner:
    """Explains why each of a category's regulations applies to the analysed product."""

    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        timeout: float = REASONING_TIMEOUT_SECONDS,
        max_workers: int = 4,
    ):
        self._llm = llm
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="reasoning")

    @property
    def llm(self) -> LLMClient:
        if self._llm is None:
            self._llm = get_llm_client()
        return self._llm

    def _ask_model(self, product_name: str, hts_code: str, rule: CategoryComplianceRule) -> List[RegulationReason]:
        prompt = REGULATION_REASONING_PROMPT.format(
            product_name=product_name,
            hts_code=hts_code,
            category_label=rule.label,
            regulations=_bullets(rule.required_regulations),
            risk_flags=_bullets(rule.high_risk_flags),
        )
        text = self.llm.send_request(
            prompt,
            requires_json=True,
            temperature=0.2,
            system_prompt=REGULATION_REASONING_SYSTEM_PROMPT,
        )
        data: Dict[str, Any] = json.loads(text)
        raw_items = data.get("reasoning") if isinstance(data, dict) else None
        if not isinstance(raw_items, list):
            raw_items = []
        return [RegulationReason.model_validate(item) for item in raw_items]

    def generate(
        self, product_name: str, hts_code: str, rule: CategoryComplianceRule
    ) -> Optional[List[RegulationReason]]:
        """Reasoning for every required regulation, or None when the model is slow or fails."""
        if not rule.required_regulations:
            return []

        future = self._executor.submit(self._ask_model, product_name, hts_code, rule)
        try:
            items = future.result(timeout=self.timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(f"Regulation reasoning timed out after {self.timeout}s for {rule.id}")
            return None
        except (LLMError, ValueError, ValidationError) as e:
            logger.warning(f"Regulation reasoning unavailable for {rule.id}: {e}")
            return None

        return complete_reasoning(items, rule)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
