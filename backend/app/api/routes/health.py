from fastapi import APIRouter, Depends

from app.api.deps import get_orchestrator, get_registry
from app.schemas.health import ReadinessResponse
from app.services.orchestrator import RoutingOrchestrator
from app.services.provider_registry import ProviderRegistry

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/readiness", response_model=ReadinessResponse)
async def readiness(
    registry: ProviderRegistry = Depends(get_registry),
    orchestrator: RoutingOrchestrator = Depends(get_orchestrator),
) -> ReadinessResponse:
    stats = await registry.stats()
    storage_initialized = orchestrator.is_storage_initialized()
    return ReadinessResponse(
        ready=storage_initialized and stats.total > 0,
        storage_initialized=storage_initialized,
        provider_count=stats.total,
        providers=stats,
    )
