import base64
import json
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from .category_usage import CategoryUsageLogger, build_category_usage_event, utc_now_iso
from .compliance import get_factory_vetting_by_category, resolve
from .knowledge_store import KnowledgeStore
from .limit_events import LimitEventStore, get_limit_event_store
from .llm_client import LLMError
from .models import LimitAction, LimitEvent, ProductAnalysis, UserType
from .order_cost import estimate_initial_order_cost
from .product_analysis import ProductAnalyzer, get_product_analyzer
from .reasoning import RegulationReasoner
from .testing_costs import estimate_testing_cost
from .usage_limit import UsageLimiter, get_usage_limiter

logger = logging.getLogger(__name__)

CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CORS_ALLOW_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

USER_HEADER = "x-user-email"


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.knowledge_store = KnowledgeStore().load()
    app.state.reasoner = RegulationReasoner()
    app.state.usage_logger = CategoryUsageLogger()
    yield
    app.state.reasoner.shutdown()


app = FastAPI(title="NexSupply Sourcing Intelligence", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------

def get_knowledge_store(request: Request) -> KnowledgeStore:
    return request.app.state.knowledge_store


def get_reasoner(request: Request) -> RegulationReasoner:
    return request.app.state.reasoner


def get_usage_logger(request: Request) -> CategoryUsageLogger:
    return request.app.state.usage_logger


@dataclass
class Caller:
    identifier: str
    is_authenticated: bool
    user_agent: Optional[str]

    @property
    def user_type(self) -> str:
        return "user" if self.is_authenticated else "anonymous"


def get_caller(request: Request) -> Caller:
    """Authenticated callers arrive with their email in X-User-Email; everyone else is keyed by IP and agent."""
    email = request.headers.get(USER_HEADER)
    user_agent = request.headers.get("user-agent")
    if email:
        return Caller(identifier=email, is_authenticated=True, user_agent=user_agent)

    ip = request.headers.get("x-forwarded-for") or "unknown"
    return Caller(identifier=f"{ip}-{user_agent or 'unknown'}", is_authenticated=False, user_agent=user_agent)


def error_response(status_code: int, error: str, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "error": error, **extra, "message": message},
    )


# ----------------------------------------------------------------------
# Background tasks (must never raise)
# ----------------------------------------------------------------------

def record_limit_event(store: LimitEventStore, event: LimitEvent) -> None:
    warning = store.record(event)
    if warning:
        logger.warning(f"Limit event not stored: {warning}")


def log_category_usage(
    usage_logger: CategoryUsageLogger, raw_input: str, analysis: ProductAnalysis, category_id: Optional[str]
) -> None:
    try:
        usage_logger.log(build_category_usage_event(raw_input, analysis, category_id))
    except Exception as e:
        logger.error(f"Failed to log category usage: {e}")


# ----------------------------------------------------------------------
# Routes
# ----------------------------------------------------------------------

@app.get("/")
def read_root():
    return {"message": "NexSupply Sourcing Intelligence API", "status": "ok"}


@app.get("/health")
def health(store: KnowledgeStore = Depends(get_knowledge_store)):
    return {"status": "healthy", "knowledge": store.stats()}


async def read_analysis_input(request: Request) -> Dict[str, Optional[str]]:
    """Accepts JSON ({input|text, image?}) or multipart form (input, image file)."""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        body = await request.json()
        if not isinstance(body, dict):
            raise ValueError("JSON body must be an object")
        text = body.get("input") or body.get("text") or ""
        image = body.get("image") or None
        if not isinstance(text, str):
            raise ValueError("input must be a string")
        if image is not None and not isinstance(image, str):
            raise ValueError("image must be a base64 string")
        return {"input": text, "image": image}

    form = await request.form()
    image_base64 = None
    image = form.get("image")
    if image is not None and hasattr(image, "read"):
        data = await image.read()
        if data:
            image_base64 = base64.b64encode(data).decode("ascii")
    text = form.get("input")
    return {"input": text if isinstance(text, str) else "", "image": image_base64}


@app.post("/api/analyze-product")
async def analyze_product(
    request: Request,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_caller),
    limiter: UsageLimiter = Depends(get_usage_limiter),
    store: KnowledgeStore = Depends(get_knowledge_store),
    analyzer: ProductAnalyzer = Depends(get_product_analyzer),
    reasoner: RegulationReasoner = Depends(get_reasoner),
    usage_logger: CategoryUsageLogger = Depends(get_usage_logger),
    limit_store: LimitEventStore = Depends(get_limit_event_store),
):
    usage = limiter.increment_usage(caller.identifier, caller.is_authenticated)
    if usage.exceeded:
        if caller.is_authenticated:
            reason = "user_daily_limit"
            message = "You have reached today's free analysis limit for your account."
        else:
            reason = "anonymous_daily_limit"
            message = "You have exceeded the number of free analyses for today."

        background_tasks.add_task(
            record_limit_event,
            limit_store,
            LimitEvent(
                user_id=caller.identifier if caller.is_authenticated else None,
                user_type=caller.user_type,
                reason=reason,
                action="limit_hit",
                user_agent=caller.user_agent,
                created_at=utc_now_iso(),
            ),
        )
        return JSONResponse(
            status_code=429,
            content={"ok": False, "error": "quota_exceeded", "reason": reason, "message": message},
            background=background_tasks,
        )

    try:
        payload = await read_analysis_input(request)
    except (ValueError, json.JSONDecodeError) as e:
        return error_response(400, "invalid_input", f"Could not read request body: {e}")

    input_text = (payload["input"] or "").strip()
    if not input_text:
        return error_response(400, "invalid_input", "Input is required.")

    logger.info(f"Incoming analysis request for: {input_text[:50]}...")

    try:
        analysis = await run_in_threadpool(analyzer.analyze, input_text, payload["image"])

        category_id = None
        rule = resolve(store, analysis.product_name, analysis.hts_code)
        if rule is not None:
            category_id = rule.id
            analysis.compliance_hints = rule
            analysis.factory_vetting_hints = get_factory_vetting_by_category(store, rule.id)
            analysis.regulation_reasoning = await run_in_threadpool(
                reasoner.generate, analysis.product_name, analysis.hts_code, rule
            )
            analysis.testing_cost_estimate = estimate_testing_cost(rule)

        analysis.initial_order_cost = estimate_initial_order_cost(analysis)
    except LLMError as e:
        logger.error(f"Product analysis failed: {e}")
        return error_response(500, "analysis_failed", "Something went wrong while analyzing the product.")
    except Exception:
        logger.exception("Unexpected error while analyzing product")
        return error_response(500, "analysis_failed", "Something went wrong while analyzing the product.")

    background_tasks.add_task(log_category_usage, usage_logger, input_text, analysis, category_id)
    return {"ok": True, "analysis": analysis.to_response()}


class LimitEventRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    action: LimitAction
    reason: str
    user_type: UserType
    input: Optional[str] = None


@app.post("/api/limit-events")
async def create_limit_event(
    request: Request,
    caller: Caller = Depends(get_caller),
    store: LimitEventStore = Depends(get_limit_event_store),
):
    try:
        body = await request.json()
        payload = LimitEventRequest.model_validate(body)
    except json.JSONDecodeError:
        return error_response(400, "invalid_payload", "Request body must be valid JSON")
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
        return error_response(
            400,
            "invalid_payload",
            f"Invalid or missing fields: {fields}. action must be one of limit_hit, "
            f"cta_primary_click, cta_secondary_click; userType must be 'anonymous' or 'user'",
        )

    if not payload.reason.strip():
        return error_response(400, "invalid_payload", "Missing required fields: action, reason, userType")

    event = LimitEvent(
        user_id=caller.identifier if caller.is_authenticated else None,
        # The caller's real authentication state wins over the client's claim
        user_type=caller.user_type,
        reason=payload.reason,
        action=payload.action,
        input=payload.input or None,
        user_agent=caller.user_agent,
        created_at=utc_now_iso(),
    )
    warning = store.record(event)
    if warning:
        return {"ok": True, "warning": warning}
    return {"ok": True}
