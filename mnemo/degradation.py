"""Registry of non-fatal service degradations.

Components that recover from a failure locally report it here so a host
application can surface it (for example as a banner) without the failure
ever propagating into the caller's flow.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from mnemo.logging import get_logger

logger = get_logger(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
DOWN = "down"


@dataclass
class DegradedService:
    service: str
    reason: str
    status: str = DEGRADED
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[list[DegradedService]], None]


class DegradationRegistry:
    """In-memory map of service name to its latest degradation report."""

    def __init__(self) -> None:
        self._services: dict[str, DegradedService] = {}
        self._listeners: list[Listener] = []

    def report_degraded(self, service: str, reason: str, status: str = DEGRADED) -> None:
        self._services[service] = DegradedService(service=service, reason=reason, status=status)
        logger.warning("Service degraded", service=service, reason=reason, status=status)
        self._notify()

    def report_healthy(self, service: str) -> None:
        if self._services.pop(service, None) is not None:
            logger.info("Service recovered", service=service)
            self._notify()

    def get_degraded_services(self) -> list[DegradedService]:
        return [s for s in self._services.values() if s.status != HEALTHY]

    def is_service_healthy(self, service: str) -> bool:
        entry = self._services.get(service)
        return entry is None or entry.status == HEALTHY

    def on_change(self, callback: Listener) -> Callable[[], None]:
        """Subscribe to changes. Returns an unsubscribe function."""
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def _notify(self) -> None:
        services = self.get_degraded_services()
        for listener in list(self._listeners):
            try:
                listener(services)
            except Exception:
                logger.exception("Degradation listener failed")


default_registry = DegradationRegistry()


def report_degraded(service: str, reason: str, status: str = DEGRADED) -> None:
    default_registry.report_degraded(service, reason, status)


def report_healthy(service: str) -> None:
    default_registry.report_healthy(service)
