from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class KnowledgeRecord(BaseModel):
    """Base for records stored in the knowledge JSON files (camelCase on disk)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    label: str

    @field_validator("id", "label")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must be a non-empty string")
        return value

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class CategoryComplianceRule(KnowledgeRecord):
    example_products: List[str] = Field(default_factory=list)
    target_markets: List[str] = Field(default_factory=list)
    typical_hts_codes: List[str] = Field(default_factory=list)
    required_regulations: List[str] = Field(default_factory=list)
    testing_requirements: List[str] = Field(default_factory=list)
    high_risk_flags: List[str] = Field(default_factory=list)
    reference_links: List[str] = Field(default_factory=list)


class CategoryFactoryVettingHints(KnowledgeRecord):
    typical_supplier_types: List[str] = Field(default_factory=list)
    must_have_certificates: List[str] = Field(default_factory=list)
    nice_to_have_certificates: List[str] = Field(default_factory=list)
    sample_questions_to_factory: List[str] = Field(default_factory=list)
    common_red_flags: List[str] = Field(default_factory=list)
    recommended_alibaba_filters: List[str] = Field(default_factory=list)


# ----------------------------------------------------------------------
# Product analysis (model output)
# ----------------------------------------------------------------------

RiskLevel = Literal["Low", "Medium", "High"]


class LandedCostBreakdown(BaseModel):
    fob_price: str
    freight_cost: str
    duty_rate: str
    duty_cost: str
    landed_cost: str


class RiskAssessment(BaseModel):
    overall_score: float = Field(ge=0, le=100)
    compliance_risk: RiskLevel
    supplier_risk: RiskLevel
    logistics_risk: RiskLevel
    summary: str


class TestingCost(BaseModel):
    test: str
    low: float
    high: float


class RegulationReason(BaseModel):
    regulation: str
    reason: str


class InitialOrderCost(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    testing_cost_total: float
    unit_cost: float
    moq: int
    minimum_order_cost: float
    total_initial_cost: float


class ProductAnalysis(BaseModel):
    product_name: str
    hts_code: str
    landed_cost_breakdown: LandedCostBreakdown
    risk_assessment: RiskAssessment
    recommendation: str
    estimate_confidence: Optional[float] = Field(default=None, ge=0, le=100)
    missing_info: Optional[List[str]] = None
    assumptions: Optional[List[str]] = None

    compliance_hints: Optional[CategoryComplianceRule] = None
    factory_vetting_hints: Optional[CategoryFactoryVettingHints] = None
    regulation_reasoning: Optional[List[RegulationReason]] = None
    testing_cost_estimate: Optional[List[TestingCost]] = None
    initial_order_cost: Optional[InitialOrderCost] = None

    def to_response(self) -> Dict[str, Any]:
        """Serialise for the HTTP response: knowledge records keep their camelCase keys."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ----------------------------------------------------------------------
# Usage and limit events
# ----------------------------------------------------------------------

class UsageEntry(BaseModel):
    count: int
    date: int


class UsageResult(BaseModel):
    count: int
    limit: int

    @property
    def exceeded(self) -> bool:
        return self.count > self.limit


class CategoryUsageEvent(BaseModel):
    timestamp: str
    raw_input: str
    product_name: Optional[str] = None
    hts_code: Optional[str] = None
    category_id: Optional[str] = None
    market: Optional[str] = None
    channel: Optional[str] = None
    regulation_tags: Optional[List[str]] = None
    risk_score: Optional[float] = None
    feasibility_score: Optional[float] = None

    def to_json_line(self) -> str:
        return self.model_dump_json(exclude_none=True)


LimitAction = Literal["limit_hit", "cta_primary_click", "cta_secondary_click"]
UserType = Literal["anonymous", "user"]


class LimitEvent(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: Optional[str] = None
    user_type: UserType
    reason: str
    action: LimitAction
    input: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: str


# ----------------------------------------------------------------------
# Analytics documents
# ----------------------------------------------------------------------

class CategoryPopularityItem(BaseModel):
    category_id: str
    label: str
    total_count: int
    first_seen_at: str
    last_seen_at: str
    average_risk_score: Optional[float] = None
    average_feasibility_score: Optional[float] = None
    top_regulations: List[str] = Field(default_factory=list)


class CategoryPopularityData(BaseModel):
    generated_at: str
    total_categories: int
    items: List[CategoryPopularityItem] = Field(default_factory=list)


class RegulationPattern(BaseModel):
    regulation_combo: List[str]
    categories_count: int
    avg_risk_score: Optional[float] = None
    example_categories: List[str]
    common_testing_requirements: List[str]
    common_high_risk_flags: List[str]


class HtsPattern(BaseModel):
    hts_prefix: str
    categories_count: int
    dominant_regulations: List[str]
    avg_risk_score: Optional[float] = None
    notes: Optional[str] = None


class RegulationPatternsData(BaseModel):
    generated_at: str
    pattern_count: int
    by_regulation_combo: List[RegulationPattern]
    by_hts_prefix: List[HtsPattern]


# ----------------------------------------------------------------------
# Knowledge builder
# ----------------------------------------------------------------------

class ParsedInput(BaseModel):
    category_id: str
    category_label: str
    target_market: str
    example_products: List[str]
    probable_hts_codes: List[str]
    related_categories: List[str] = Field(default_factory=list)


class ComplianceResearch(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    typical_hts_codes: Optional[List[str]] = None
    required_regulations: Optional[List[str]] = None
    testing_requirements: Optional[List[str]] = None
    high_risk_flags: Optional[List[str]] = None
    reference_links: Optional[List[str]] = None
    example_products: Optional[List[str]] = None


class FactoryResearch(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    typical_supplier_types: Optional[List[str]] = None
    must_have_certificates: Optional[List[str]] = None
    nice_to_have_certificates: Optional[List[str]] = None
    sample_questions_to_factory: Optional[List[str]] = None
    common_red_flags: Optional[List[str]] = None
    recommended_alibaba_filters: Optional[List[str]] = None


class ResearchData(BaseModel):
    compliance: ComplianceResearch
    factory: FactoryResearch

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
