"""
Services - long-lived dependencies shared across runs

Extensions and applications contribute ``Service`` definitions. At engine
start every service's ``register`` hook binds instances into the
container, then every ``boot`` hook runs, in registration order. Tools and
hooks reach the instances through ``ctx.engine.container``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from ..errors import ShuttleError
from ..types import Service
from ..utils import maybe_await

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Named instances shared between services, tools and hooks."""

    def __init__(self) -> None:
        self._instances: dict[str, Any] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._instances

    def instance(self, name: str, value: Any) -> Any:
        self._instances[name] = value
        return value

    def resolve(self, name: str) -> Any:
        try:
            return self._instances[name]
        except KeyError:
            raise ShuttleError("SERVICE_NOT_FOUND", f"Nothing registered as {name!r}") from None

    def names(self) -> list[str]:
        return list(self._instances)


class ServiceManager:
    def __init__(self, container: ServiceContainer, services: Iterable[Service] = ()) -> None:
        self.container = container
        self.services: list[Service] = []
        self._booted = False
        for service in services:
            self.add(service)

    @property
    def booted(self) -> bool:
        return self._booted

    def add(self, service: Service) -> None:
        if self._booted:
            raise ShuttleError("SERVICES_BOOTED", f"Cannot add service {service.name!r} after boot")
        if not any(s is service for s in self.services):
            self.services.append(service)

    async def boot_all(self) -> None:
        """Register every service, then boot them in order. A completed boot is not repeated."""
        if self._booted:
            return
        for service in self.services:
            if service.register is not None:
                await maybe_await(service.register(self.container))
        for service in self.services:
            if service.boot is not None:
                logger.debug("Booting service %s", service.name)
                await maybe_await(service.boot(self.container))
        self._booted = True
        if self.services:
            logger.info("Booted %d service(s)", len(self.services))
