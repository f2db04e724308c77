"""
Handler registries.

Services and components are pluggable units that each own one or more
watch loops. They are collected into two ordered registries which the
operator walks twice: once to let every handler configure itself for the
platform, and once to let every handler register its reconciler.
"""

from abc import ABC, abstractmethod
from typing import Callable, Generic, Iterator, List, Tuple, TypeVar

from odh_controller.bootstrap.errors import HandlerError
from odh_controller.services.cluster import Platform

MANAGED = "Managed"
REMOVED = "Removed"


class Handler(ABC):
    """Common contract of service and component handlers."""

    name: str = ""

    def get_name(self) -> str:
        return self.name

    @abstractmethod
    def init(self, platform: Platform) -> None:
        """Platform-dependent configuration. Must not talk to the cluster."""

    @abstractmethod
    def new_reconciler(self, manager) -> None:
        """Register this handler's watch loops with `manager`."""


class ServiceHandler(Handler):
    """A platform service (monitoring, auth, ...)."""


class ComponentHandler(Handler):
    """An optional component enabled per DataScienceCluster."""

    def management_state(self, dsc: dict) -> str:
        components = dsc.get("spec", {}).get("components", {}) or {}
        return (components.get(self.name) or {}).get("managementState", REMOVED)

    def is_enabled(self, dsc: dict) -> bool:
        return self.management_state(dsc) == MANAGED


H = TypeVar("H", bound=Handler)


class HandlerRegistry(Generic[H]):
    """Append-only, ordered collection of uniquely named handlers."""

    def __init__(self, kind: str):
        self.kind = kind
        self._handlers: List[H] = []

    def register(self, handler: H) -> H:
        name = handler.get_name()
        if not name:
            raise ValueError(f"{self.kind} handler {handler!r} has no name")
        if name in self.names():
            raise ValueError(f"{self.kind} handler {name!r} is already registered")
        self._handlers.append(handler)
        return handler

    def names(self) -> Tuple[str, ...]:
        return tuple(h.get_name() for h in self._handlers)

    def __iter__(self) -> Iterator[H]:
        return iter(tuple(self._handlers))

    def __len__(self) -> int:
        return len(self._handlers)


def for_each(registry: HandlerRegistry[H], fn: Callable[[H], None]) -> None:
    """
    Apply `fn` to every handler in registration order.

    Stops at the first failure and raises HandlerError naming the handler,
    with the original exception as its cause.
    """
    for handler in registry:
        name = handler.get_name()
        try:
            fn(handler)
        except HandlerError as e:
            if e.handler == name:
                raise
            raise HandlerError(name, f"{name}: {e}") from e
        except Exception as e:
            raise HandlerError(name, f"{name}: {e}") from e


def default_registries() -> Tuple[HandlerRegistry[ServiceHandler], HandlerRegistry[ComponentHandler]]:
    """Build the service and component registries shipped with the operator."""
    from odh_controller.handlers.dashboard import DashboardHandler
    from odh_controller.handlers.monitoring import MonitoringHandler

    services: HandlerRegistry[ServiceHandler] = HandlerRegistry("service")
    services.register(MonitoringHandler())

    components: HandlerRegistry[ComponentHandler] = HandlerRegistry("component")
    components.register(DashboardHandler())

    return services, components
