"""
Shared FastAPI dependencies for outbound clients.

Both clients are process-wide singletons closed from the app lifespan;
tests swap them out through ``app.dependency_overrides``.
"""
from app.config import get_settings
from app.services.notifications import Notifier
from app.services.routing import OrsClient, RouteProvider

settings = get_settings()

_route_provider: OrsClient | None = None
_notifier: Notifier | None = None


def get_route_provider() -> RouteProvider:
    global _route_provider
    if _route_provider is None:
        _route_provider = OrsClient(
            api_key=settings.ors_api_key,
            base_url=settings.ors_base_url,
            timeout=settings.ors_timeout_seconds,
        )
    return _route_provider


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = Notifier(settings)
    return _notifier


async def close_clients() -> None:
    global _route_provider, _notifier
    if _route_provider is not None:
        await _route_provider.aclose()
        _route_provider = None
    if _notifier is not None:
        await _notifier.aclose()
        _notifier = None
