"""
Prompt texts
============
All LLM prompt templates in one place. Templates use ``str.format`` fields;
literal JSON braces are doubled.
"""

# ----------------------------------------------------------------------
# Product analysis
# ----------------------------------------------------------------------

PRODUCT_ANALYSIS_SYSTEM_PROMPT = """You are a senior sourcing analyst for US importers buying from overseas factories.
You estimate landed cost, classify products under the US Harmonized Tariff Schedule, and assess sourcing risk.
Be concrete. When information is missing, state your assumptions instead of refusing."""

PRODUCT_ANALYSIS_PROMPT = """Analyze this product for import into the United States.

Product description or link:
\"\"\"{input}\"\"\"

{image_note}

Return a single JSON object with exactly these fields:
{{
  "product_name": "Identified product name",
  "hts_code": "Estimated HTS code (format XXXX.XX.XX)",
  "landed_cost_breakdown": {{
    "fob_price": "Estimated FOB price per unit, e.g. \\"$5.00\\"",
    "freight_cost": "Estimated freight per unit, e.g. \\"$1.50\\"",
    "duty_rate": "Estimated duty rate, e.g. \\"25%\\"",
    "duty_cost": "Estimated duty per unit, e.g. \\"$1.25\\"",
    "landed_cost": "Total landed cost per unit, e.g. \\"$7.75\\""
  }},
  "risk_assessment": {{
    "overall_score": 0-100 (100 is safest),
    "compliance_risk": "Low" | "Medium" | "High",
    "supplier_risk": "Low" | "Medium" | "High",
    "logistics_risk": "Low" | "Medium" | "High",
    "summary": "Short summary of the risk profile"
  }},
  "recommendation": "A short 'Should you proceed?' summary",
  "estimate_confidence": 0-100,
  "missing_info": ["Key information that is missing"],
  "assumptions": ["Assumptions made for this estimate"]
}}"""

IMAGE_NOTE = "A product photo is attached. Use it to identify the product, materials and construction."

# ----------------------------------------------------------------------
# Regulation reasoning
# ----------------------------------------------------------------------

REGULATION_REASONING_SYSTEM_PROMPT = """You are a US product compliance specialist.
Explain in plain language why each regulation applies to a specific product. One or two sentences per regulation."""

REGULATION_REASONING_PROMPT = """Product: {product_name}
HTS code: {hts_code}
Category: {category_label}

Regulations that apply to this category:
{regulations}

Known high-risk flags for the category:
{risk_flags}

For EACH regulation listed above, explain why it applies to this product.
Return JSON:
{{
  "reasoning": [
    {{"regulation": "exact regulation name from the list", "reason": "why it applies"}}
  ]
}}"""

# ----------------------------------------------------------------------
# Knowledge builder
# ----------------------------------------------------------------------

PARSE_INPUT_PROMPT = """Based on the user input: "{input}"

Generate a JSON object with the following fields:
- "label": Human-readable category label (e.g., "Silicone Baby Teether Toy" for "US baby teether toy (silicone)")
- "exampleProducts": Array of 3-5 example product names that match this category
- "probableHtsCodes": Array of 2-4 probable HTS codes for US imports (format: "XXXX.XX.XX")
- "targetMarket": Default target market (default to "United States" unless specified)

Return ONLY a valid JSON object. Example:
{{
  "label": "Silicone Baby Teether Toy",
  "exampleProducts": ["silicone teether ring", "fruit-shaped silicone teether", "baby teething mitt"],
  "probableHtsCodes": ["9503.00.00", "3924.90.56"],
  "targetMarket": "United States"
}}"""

RESEARCH_SYSTEM_PROMPT = """You are a meticulous compliance and sourcing research expert.
Provide accurate, specific, and actionable information based on real US regulations and industry standards. Always cite official sources."""

RESEARCH_PROMPT = """Conduct comprehensive research for this product category: "{input}"

Category context:
- Label: {label}
- Target market: {market}
- Example products: {examples}

A. Regulations and compliance. Cover every applicable US regulation:
- CPSIA sections that apply
- ASTM standards (e.g. ASTM F963 for toys)
- CPSC small parts rules (16 CFR Part 1501)
- Lead and phthalate limits (16 CFR Part 1303, 16 CFR Part 1307)
- FDA food contact rules (21 CFR 177.x) where relevant
- Tracking label requirements
- Recent recalls or known issues for similar products
- State rules such as CA Prop 65

B. Required testing: third-party lab tests, ASTM performance tests, FDA extraction tests, age grading.

C. Factory vetting: typical supplier types, must-have and nice-to-have certificates (ISO 9001, BSCI, SMETA...),
common red flags, and useful Alibaba search filters.

Return a single JSON object with this exact structure:
{{
  "compliance": {{
    "typicalHtsCodes": ["XXXX.XX.XX"],
    "requiredRegulations": ["..."],
    "testingRequirements": ["..."],
    "highRiskFlags": ["..."],
    "referenceLinks": ["https://official-link.gov/..."],
    "exampleProducts": ["..."]
  }},
  "factory": {{
    "typicalSupplierTypes": ["..."],
    "mustHaveCertificates": ["..."],
    "niceToHaveCertificates": ["..."],
    "sampleQuestionsToFactory": ["...?"],
    "commonRedFlags": ["..."],
    "recommendedAlibabaFilters": ["..."]
  }}
}}

Use real regulation numbers, real test standards and real certificate names. Reference links must be .gov or .org sites."""

VERIFY_SYSTEM_PROMPT = """You are a strict fact-checker. Remove all hallucinations, incorrect information, and generic advice. Only output verified facts."""

VERIFY_PROMPT = """Review the following research data for the category: "{label}"

Verify, correct, and complete it:
1. Regulations: every CFR part must exist; remove wrong ones, add critical missing ones, use official names.
2. HTS codes: must be plausible for this category and formatted "XXXX.XX.XX".
3. Testing requirements: specific CPSIA / ASTM / FDA test names only, no vague items.
4. Reference links: official .gov or .org pages only.
5. Factory vetting: real certificates, specific and actionable questions.
6. High-risk flags: specific to this category, no generic warnings.

Input data:
```json
{research_json}
```

Return the corrected JSON object with the EXACT same structure and no commentary."""
