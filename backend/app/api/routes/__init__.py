from app.api.routes.admin import router as admin_router
from app.api.routes.health import router as health_router
from app.api.routes.jobs import router as jobs_router
from app.api.routes.providers import router as providers_router

__all__ = ["admin_router", "health_router", "jobs_router", "providers_router"]
