from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_registry
from app.core.security import require_admin_api_key
from app.models.provider import Provider, ProviderRegisterRequest
from app.services.provider_registry import ProviderRegistry

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin_api_key)])


@router.post("/providers", response_model=Provider, status_code=status.HTTP_201_CREATED)
async def register_provider(
    payload: ProviderRegisterRequest,
    registry: ProviderRegistry = Depends(get_registry),
) -> Provider:
    return await registry.register_from_request(payload)


@router.delete("/providers/{provider_id}", response_model=Provider)
async def unregister_provider(provider_id: str, registry: ProviderRegistry = Depends(get_registry)) -> Provider:
    try:
        return await registry.unregister(provider_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Provider not found") from exc
