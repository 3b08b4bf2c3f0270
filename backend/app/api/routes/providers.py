from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_registry
from app.models.provider import Provider, ProviderListResponse, ProviderStats
from app.services.provider_registry import ProviderRegistry

router = APIRouter(prefix="/providers", tags=["providers"])


@router.get("", response_model=ProviderListResponse)
async def list_providers(registry: ProviderRegistry = Depends(get_registry)) -> ProviderListResponse:
    return ProviderListResponse(items=await registry.list_providers())


@router.get("/stats", response_model=ProviderStats)
async def provider_stats(registry: ProviderRegistry = Depends(get_registry)) -> ProviderStats:
    return await registry.stats()


@router.get("/{provider_id}", response_model=Provider)
async def get_provider(provider_id: str, registry: ProviderRegistry = Depends(get_registry)) -> Provider:
    provider = await registry.get(provider_id)
    if not provider:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Provider not found")
    return provider
