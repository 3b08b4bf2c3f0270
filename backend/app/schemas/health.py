from pydantic import BaseModel

from app.models.provider import ProviderStats


class ReadinessResponse(BaseModel):
    ready: bool
    storage_initialized: bool
    provider_count: int
    providers: ProviderStats
