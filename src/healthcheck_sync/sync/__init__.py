"""
Real-time channel for session documents and membership events.

Provides:
- SyncGateway protocol and subscription registry
- LoopbackHub for in-process clients
- WebSocketGateway for a networked relay

The websockets dependency is imported lazily via __getattr__ so that
``from healthcheck_sync.sync.gateway import ...`` stays lightweight.
"""

from .gateway import LoopbackGateway, LoopbackHub, SubscriptionRegistry, SyncGateway
from .messages import MemberJoined, MemberLeft, RosterEntry

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "WebSocketGateway": (".client", "WebSocketGateway"),
    "ConnectionStatus": (".client", "ConnectionStatus"),
}


def __getattr__(name: str):
    if name in _LAZY_IMPORTS:
        module_path, attr = _LAZY_IMPORTS[name]
        import importlib

        mod = importlib.import_module(module_path, __name__)
        return getattr(mod, attr)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "ConnectionStatus",
    "LoopbackGateway",
    "LoopbackHub",
    "MemberJoined",
    "MemberLeft",
    "RosterEntry",
    "SubscriptionRegistry",
    "SyncGateway",
    "WebSocketGateway",
]
