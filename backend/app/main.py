from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, ORJSONResponse

from app.api.routes import admin_router, health_router, jobs_router, providers_router
from app.core.config import Settings, get_settings
from app.core.logging import configure_logging, get_logger
from app.models.ranking import ScoringWeights
from app.services.filter import ConstraintFilter
from app.services.identity import IdentityService
from app.services.job_store import InMemoryJobStore
from app.services.normalizer import DefaultPriceNormalizer
from app.services.orchestrator import RoutingOrchestrator
from app.services.provider_registry import ProviderRegistry
from app.services.quotes import QuoteAcquisition
from app.services.ranker import Ranker
from app.services.reasoning import ReasoningTraceBuilder
from app.services.scorer import Scorer
from app.services.token_prices import CachedTokenPriceSource, StaticTokenPriceSource
from app.services.trace_storage import FileTraceStorage, InMemoryTraceStorage, TraceStorage

logger = get_logger("computerouter.main")


def build_trace_storage(settings: Settings) -> TraceStorage:
    if settings.trace_storage_backend == "file":
        storage = FileTraceStorage(settings.trace_storage_dir)
        storage.initialize()
        return storage
    return InMemoryTraceStorage()


def build_orchestrator(settings: Settings, registry: ProviderRegistry) -> RoutingOrchestrator:
    # Invalid weights abort startup rather than surfacing per request.
    scorer = Scorer(
        ScoringWeights(
            price=settings.weight_price,
            latency=settings.weight_latency,
            reputation=settings.weight_reputation,
            geography=settings.weight_geography,
        )
    )
    token_prices = CachedTokenPriceSource(
        StaticTokenPriceSource(settings.token_prices),
        ttl_sec=settings.token_price_max_age_sec,
    )
    ranker = Ranker(
        constraint_filter=ConstraintFilter(fail_fast=settings.filter_fail_fast),
        quote_acquisition=QuoteAcquisition(timeout_ms=settings.quote_timeout_ms),
        normalizer=DefaultPriceNormalizer(
            token_prices,
            max_token_price_age_sec=settings.token_price_max_age_sec,
            include_hidden_costs=settings.include_hidden_costs,
            apply_spot_discount=settings.apply_spot_discount,
        ),
        scorer=scorer,
        top_n=settings.top_n,
    )
    return RoutingOrchestrator(
        registry=registry,
        ranker=ranker,
        trace_builder=ReasoningTraceBuilder(
            max_bytes=settings.trace_max_bytes,
            warning_bytes=settings.trace_size_warning_bytes,
        ),
        trace_storage=build_trace_storage(settings),
        identity_service=IdentityService(settings.identity_hash_salt),
        job_store=InMemoryJobStore(),
        upload_timeout_sec=settings.trace_upload_timeout_sec,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_file)

    registry = ProviderRegistry(http_timeout_sec=settings.quote_timeout_sec)
    if settings.seed_demo_providers:
        await registry.seed_providers()
    orchestrator = build_orchestrator(settings, registry)

    app.state.settings = settings
    app.state.registry = registry
    app.state.orchestrator = orchestrator
    logger.info("service_started", extra={"event": "service.started"})

    try:
        yield
    finally:
        await registry.close()
        logger.info("service_stopped", extra={"event": "service.stopped"})


settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def https_enforcement(request: Request, call_next):
    if not settings.enforce_https:
        return await call_next(request)

    proto = request.headers.get("x-forwarded-proto", request.url.scheme or "")
    client_host = request.client.host if request.client else ""
    is_local = client_host in {"127.0.0.1", "::1", "localhost"}
    if proto.lower() != "https" and not (settings.allow_insecure_localhost and is_local):
        return JSONResponse(
            status_code=426,
            content={"detail": "HTTPS is required for this endpoint"},
        )
    return await call_next(request)


app.include_router(jobs_router, prefix=settings.api_v1_prefix)
app.include_router(providers_router, prefix=settings.api_v1_prefix)
app.include_router(admin_router, prefix=settings.api_v1_prefix)
app.include_router(health_router, prefix=settings.api_v1_prefix)


@app.get("/healthz")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}
