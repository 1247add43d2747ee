"""
Category Knowledge Builder
==========================
Turns a short category description ("US baby teether toy (silicone)") into a
compliance rule and a factory vetting record:

    parse_input -> research -> verify -> build records -> merge -> commit

Research and verification are single JSON model calls. Their results come
back as a ``StageResult`` so callers can tell unparseable output apart from
output with the wrong shape; any non-ok stage aborts the category with
``KnowledgeBuildError`` and nothing is written.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Generic, Literal, Optional, TypeVar

from pydantic import ValidationError

from . import git_ops
from .knowledge_store import (
    COMPLIANCE_FILE_PATH,
    FACTORY_FILE_PATH,
    MergeStatus,
    merge_knowledge,
)
from .llm_client import LLMClient, LLMError, get_llm_client
from .models import (
    CategoryComplianceRule,
    CategoryFactoryVettingHints,
    ParsedInput,
    ResearchData,
)
from .prompts import (
    PARSE_INPUT_PROMPT,
    RESEARCH_PROMPT,
    RESEARCH_SYSTEM_PROMPT,
    VERIFY_PROMPT,
    VERIFY_SYSTEM_PROMPT,
)

logger = logging.getLogger(__name__)

DEFAULT_TARGET_MARKET = "United States"

T = TypeVar("T")
StageStatus = Literal["ok", "parse_error", "schema_error"]


class KnowledgeBuildError(RuntimeError):
    def __init__(self, stage: str, status: str, message: str):
        super().__init__(f"{stage} failed ({status}): {message}")
        self.stage = stage
        self.status = status


@dataclass
class StageResult(Generic[T]):
    status: StageStatus
    data: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @classmethod
    def success(cls, data: T) -> "StageResult[T]":
        return cls(status="ok", data=data)

    @classmethod
    def failure(cls, status: StageStatus, error: str) -> "StageResult[T]":
        return cls(status=status, error=error)


@dataclass
class GeneratedKnowledge:
    parsed: ParsedInput
    compliance: CategoryComplianceRule
    factory: CategoryFactoryVettingHints


@dataclass
class BuildOutcome:
    knowledge: GeneratedKnowledge
    merge: MergeStatus
    committed: bool


def slugify(text: str) -> str:
    """'US baby teether toy (silicone)' -> 'us_baby_teether_toy'"""
    slug = text.lower()
    slug = re.sub(r"\(.*?\)", "", slug)
    slug = slug.strip()
    slug = re.sub(r"\s+", "_", slug)
    slug = re.sub(r"[^\w-]+", "", slug)
    slug = re.sub(r"_+", "_", slug)
    return slug.strip("_")


def _parse_research(text: str) -> StageResult[ResearchData]:
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        return StageResult.failure("parse_error", f"invalid JSON: {e}")
    try:
        return StageResult.success(ResearchData.model_validate(raw))
    except ValidationError as e:
        return StageResult.failure("schema_error", f"{e.error_count()} validation errors: {e.errors()[0]['msg']}")


class CategoryKnowledgeBuilder:
    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        compliance_path=COMPLIANCE_FILE_PATH,
        factory_path=FACTORY_FILE_PATH,
    ):
        self._llm = llm
        self.compliance_path = compliance_path
        self.factory_path = factory_path

    @property
    def llm(self) -> LLMClient:
        if self._llm is None:
            self._llm = get_llm_client()
        return self._llm

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def parse_input(self, input_text: str) -> ParsedInput:
        logger.info("Deriving category information from input...")
        text = self.llm.send_request(
            PARSE_INPUT_PROMPT.format(input=input_text), requires_json=True, temperature=0.3
        )
        try:
            raw: Dict[str, Any] = json.loads(text)
        except json.JSONDecodeError as e:
            raise KnowledgeBuildError("parse_input", "parse_error", str(e)) from e
        if not isinstance(raw, dict):
            raise KnowledgeBuildError("parse_input", "schema_error", "expected a JSON object")

        label = raw.get("label") or input_text
        try:
            return ParsedInput(
                category_id=slugify(input_text),
                category_label=label,
                target_market=raw.get("targetMarket") or DEFAULT_TARGET_MARKET,
                example_products=raw.get("exampleProducts") or [label],
                probable_hts_codes=raw.get("probableHtsCodes") or [],
                related_categories=raw.get("relatedCategories") or [],
            )
        except ValidationError as e:
            raise KnowledgeBuildError("parse_input", "schema_error", str(e)) from e

    def research(self, input_text: str, parsed: ParsedInput) -> StageResult[ResearchData]:
        logger.info("Researching regulations, compliance, and factory vetting...")
        prompt = RESEARCH_PROMPT.format(
            input=input_text,
            label=parsed.category_label,
            market=parsed.target_market,
            examples=", ".join(parsed.example_products),
        )
        try:
            text = self.llm.send_request(
                prompt, requires_json=True, temperature=0.3, system_prompt=RESEARCH_SYSTEM_PROMPT
            )
        except LLMError as e:
            return StageResult.failure("parse_error", str(e))
        return _parse_research(text)

    def verify(self, research: ResearchData, label: str) -> StageResult[ResearchData]:
        logger.info("Verifying and fact-checking research data...")
        prompt = VERIFY_PROMPT.format(
            label=label,
            research_json=json.dumps(research.to_dict(), indent=2, ensure_ascii=False),
        )
        try:
            text = self.llm.send_request(
                prompt, requires_json=True, temperature=0.3, system_prompt=VERIFY_SYSTEM_PROMPT
            )
        except LLMError as e:
            return StageResult.failure("parse_error", str(e))
        return _parse_research(text)

    @staticmethod
    def build_compliance_record(parsed: ParsedInput, verified: ResearchData) -> CategoryComplianceRule:
        c = verified.compliance
        return CategoryComplianceRule(
            id=parsed.category_id,
            label=parsed.category_label,
            example_products=c.example_products if c.example_products is not None else parsed.example_products,
            target_markets=[parsed.target_market],
            typical_hts_codes=c.typical_hts_codes if c.typical_hts_codes is not None else parsed.probable_hts_codes,
            required_regulations=c.required_regulations or [],
            testing_requirements=c.testing_requirements or [],
            high_risk_flags=c.high_risk_flags or [],
            reference_links=c.reference_links or [],
        )

    @staticmethod
    def build_factory_record(parsed: ParsedInput, verified: ResearchData) -> CategoryFactoryVettingHints:
        f = verified.factory
        return CategoryFactoryVettingHints(
            id=parsed.category_id,
            label=parsed.category_label,
            typical_supplier_types=f.typical_supplier_types or [],
            must_have_certificates=f.must_have_certificates or [],
            nice_to_have_certificates=f.nice_to_have_certificates or [],
            sample_questions_to_factory=f.sample_questions_to_factory or [],
            common_red_flags=f.common_red_flags or [],
            recommended_alibaba_filters=f.recommended_alibaba_filters or [],
        )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def generate(self, input_text: str) -> GeneratedKnowledge:
        """Parse, research, verify and assemble records. Writes nothing."""
        try:
            parsed = self.parse_input(input_text)
        except LLMError as e:
            raise KnowledgeBuildError("parse_input", "parse_error", str(e)) from e

        researched = self.research(input_text, parsed)
        if not researched.ok:
            raise KnowledgeBuildError("research", researched.status, researched.error or "")

        verified = self.verify(researched.data, parsed.category_label)
        if not verified.ok:
            raise KnowledgeBuildError("verify", verified.status, verified.error or "")

        return GeneratedKnowledge(
            parsed=parsed,
            compliance=self.build_compliance_record(parsed, verified.data),
            factory=self.build_factory_record(parsed, verified.data),
        )

    def run(self, input_text: str, commit: bool = True) -> BuildOutcome:
        knowledge = self.generate(input_text)

        logger.info("Merging data into JSON files...")
        merge = merge_knowledge(
            knowledge.compliance,
            knowledge.factory,
            compliance_path=self.compliance_path,
            factory_path=self.factory_path,
        )
        logger.info(f"Compliance file: {merge.compliance}, factory file: {merge.factory}")

        committed = False
        if commit:
            committed = git_ops.commit_paths(
                [merge.compliance_path, merge.factory_path],
                f"Auto-update category knowledge: {knowledge.parsed.category_id}",
            )
        return BuildOutcome(knowledge=knowledge, merge=merge, committed=committed)
