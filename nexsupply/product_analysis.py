"""
Product analysis
================
One LLM call that turns a product description (and optional photo) into a
validated ``ProductAnalysis``: HTS estimate, landed-cost breakdown and risk
assessment. Category enrichment is added afterwards by the web layer.
"""

import json
import logging
from typing import Optional

from pydantic import ValidationError

from .llm_client import LLMClient, LLMError, get_llm_client
from .models import ProductAnalysis
from .prompts import IMAGE_NOTE, PRODUCT_ANALYSIS_PROMPT, PRODUCT_ANALYSIS_SYSTEM_PROMPT

logger = logging.getLogger(__name__)


class ProductAnalyzer:
    def __init__(self, llm: Optional[LLMClient] = None):
        self._llm = llm

    @property
    def llm(self) -> LLMClient:
        if self._llm is None:
            self._llm = get_llm_client()
        return self._llm

    def analyze(self, input_text: str, image_base64: Optional[str] = None) -> ProductAnalysis:
        """
        Raises LLMError when the model call fails or its answer does not fit
        the ProductAnalysis shape.
        """
        prompt = PRODUCT_ANALYSIS_PROMPT.format(
            input=input_text,
            image_note=IMAGE_NOTE if image_base64 else "",
        )
        text = self.llm.send_request(
            prompt,
            requires_json=True,
            temperature=0.3,
            system_prompt=PRODUCT_ANALYSIS_SYSTEM_PROMPT,
            image_base64=image_base64,
        )

        try:
            analysis = ProductAnalysis.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Product analysis response did not match the expected shape: {e}")
            raise LLMError("Model returned an invalid product analysis") from e

        logger.info(f"Analyzed product '{analysis.product_name}' (HTS {analysis.hts_code})")
        return analysis


product_analyzer = ProductAnalyzer()


def get_product_analyzer() -> ProductAnalyzer:
    return product_analyzer
