from starlette.requests import HTTPConnection

from app.core.config import Settings
from app.services.orchestrator import RoutingOrchestrator
from app.services.provider_registry import ProviderRegistry


def get_settings(connection: HTTPConnection) -> Settings:
    return connection.app.state.settings


def get_registry(connection: HTTPConnection) -> ProviderRegistry:
    return connection.app.state.registry


def get_orchestrator(connection: HTTPConnection) -> RoutingOrchestrator:
    return connection.app.state.orchestrator
