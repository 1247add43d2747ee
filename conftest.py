import json
import threading
from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from nexsupply import main
from nexsupply.category_usage import CategoryUsageLogger
from nexsupply.knowledge_store import KnowledgeStore
from nexsupply.limit_events import LimitEventStore
from nexsupply.llm_client import LLMError
from nexsupply.product_analysis import ProductAnalyzer
from nexsupply.reasoning import RegulationReasoner
from nexsupply.usage_limit import BYPASS_ENV_VAR, UsageLimiter

TEETHER_RULE = {
    "id": "baby_teether",
    "label": "Silicone Baby Teether",
    "exampleProducts": ["silicone teether ring", "baby teething mitt"],
    "targetMarkets": ["United States"],
    "typicalHtsCodes": ["9503.00.00", "3924.90.56"],
    "requiredRegulations": ["CPSIA", "ASTM F963", "FDA 21 CFR"],
    "testingRequirements": ["CPSIA lead and phthalates (16 CFR Part 1303)"],
    "highRiskFlags": ["Detachable small parts"],
    "referenceLinks": ["https://www.cpsc.gov/"],
}

TUMBLER_RULE = {
    "id": "stainless_steel_tumbler",
    "label": "Stainless Steel Tumbler",
    "exampleProducts": ["insulated tumbler", "stainless steel water bottle"],
    "targetMarkets": ["United States"],
    "typicalHtsCodes": ["7323.93.00"],
    "requiredRegulations": ["FDA 21 CFR", "CA Prop 65"],
    "testingRequirements": ["FDA food contact testing"],
    "highRiskFlags": ["Lead solder sealing dot"],
    "referenceLinks": [],
}

EU_TOY_RULE = {
    "id": "eu_plush_toy",
    "label": "Plush Toy",
    "exampleProducts": ["stuffed bear"],
    "targetMarkets": ["European Union"],
    "typicalHtsCodes": ["9503.00.00"],
    "requiredRegulations": ["EN 71", "CE"],
    "testingRequirements": [],
    "highRiskFlags": [],
    "referenceLinks": [],
}

TEETHER_VETTING = {
    "id": "baby_teether",
    "label": "Silicone Baby Teether",
    "typicalSupplierTypes": ["Silicone molding OEM"],
    "mustHaveCertificates": ["ISO 9001"],
    "niceToHaveCertificates": ["BSCI"],
    "sampleQuestionsToFactory": ["Can you share the FDA extraction report?"],
    "commonRedFlags": ["Old test reports"],
    "recommendedAlibabaFilters": ["Verified Supplier"],
}

TEETHER_ANALYSIS = {
    "product_name": "Silicone Baby Teether",
    "hts_code": "9503.00.00",
    "landed_cost_breakdown": {
        "fob_price": "$2.20",
        "freight_cost": "$0.30",
        "duty_rate": "0%",
        "duty_cost": "$0.00",
        "landed_cost": "$2.91",
    },
    "risk_assessment": {
        "overall_score": 62,
        "compliance_risk": "High",
        "supplier_risk": "Medium",
        "logistics_risk": "Low",
        "summary": "Children's product with mandatory third-party testing.",
    },
    "recommendation": "Proceed once CPSIA testing is budgeted.",
    "estimate_confidence": 70,
}


class FakeLLM:
    """Scripted stand-in for LLMClient.send_request.

    Each call returns the next scripted item (dicts are JSON-encoded,
    exceptions are raised). When the script runs out, ``default`` is used.
    """

    def __init__(self, *responses, default=None):
        self.responses = list(responses)
        self.default = default
        self.calls = []
        self._lock = threading.Lock()

    def send_request(self, prompt, requires_json=False, **kwargs):
        with self._lock:
            self.calls.append({"prompt": prompt, "requires_json": requires_json, **kwargs})
            if self.responses:
                item = self.responses.pop(0)
            elif self.default is not None:
                item = self.default
            else:
                raise LLMError("FakeLLM script exhausted")
        if isinstance(item, Exception):
            raise item
        if isinstance(item, (dict, list)):
            return json.dumps(item)
        return item


def write_knowledge(directory: Path, rules, vetting):
    compliance_path = directory / "compliance" / "category_rules.json"
    factory_path = directory / "factory" / "category_vetting.json"
    compliance_path.parent.mkdir(parents=True, exist_ok=True)
    factory_path.parent.mkdir(parents=True, exist_ok=True)
    compliance_path.write_text(json.dumps({"categories": rules}, indent=2), encoding="utf-8")
    factory_path.write_text(json.dumps({"categories": vetting}, indent=2), encoding="utf-8")
    return compliance_path, factory_path


@pytest.fixture
def knowledge_store(tmp_path):
    compliance_path, factory_path = write_knowledge(
        tmp_path / "data", [TEETHER_RULE, TUMBLER_RULE, EU_TOY_RULE], [TEETHER_VETTING]
    )
    return KnowledgeStore(compliance_path, factory_path).load()


@pytest.fixture
def fake_llm():
    return FakeLLM


@pytest.fixture
def api(tmp_path, knowledge_store, monkeypatch):
    """TestClient with every service dependency pointed at temp files and fake models."""
    monkeypatch.delenv(BYPASS_ENV_VAR, raising=False)

    limiter = UsageLimiter()
    analyzer = ProductAnalyzer(llm=FakeLLM(default=TEETHER_ANALYSIS))
    reasoner = RegulationReasoner(
        llm=FakeLLM(default={"reasoning": [{"regulation": "CPSIA", "reason": "Children's product."}]}),
        timeout=5,
    )
    usage_logger = CategoryUsageLogger(tmp_path / "logs" / "category-usage.ndjson")
    limit_store = LimitEventStore(tmp_path / "logs" / "limit-events.ndjson")

    overrides = {
        main.get_knowledge_store: lambda: knowledge_store,
        main.get_usage_limiter: lambda: limiter,
        main.get_product_analyzer: lambda: analyzer,
        main.get_reasoner: lambda: reasoner,
        main.get_usage_logger: lambda: usage_logger,
        main.get_limit_event_store: lambda: limit_store,
    }
    main.app.dependency_overrides.update(overrides)
    yield SimpleNamespace(
        client=TestClient(main.app),
        usage_log_path=usage_logger.path,
        limit_store=limit_store,
        limiter=limiter,
        analyzer=analyzer,
    )
    main.app.dependency_overrides.clear()
    reasoner.shutdown()
