"""Provider contract and the registry that orders providers for startup."""

from __future__ import annotations

import heapq
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from devbuild.core.errors import ConfigurationError, NotFoundError
from devbuild.core.lifecycle import Service
from devbuild.core.model import SUCCESS, ServiceConfig

DEFAULT_SERVICE_ORDER = 100


@runtime_checkable
class Provider(Protocol):
    name: str
    service_order: int
    dependencies: tuple[str, ...]

    def init(self, options: Mapping[str, Any]) -> None:
        """Idempotent setup, e.g. make sure a binary is present."""

    def build(self, options: Mapping[str, Any]) -> int:
        """Run once and return an exit status."""

    def watch(self, options: Mapping[str, Any]) -> int:
        """Block until stopped or failed and return an exit status."""

    def create_service(self, options: Mapping[str, Any]) -> Service:
        """Return a fresh lifecycle instance running this provider's watch mode."""


class _WatchCallService(Service):
    def __init__(self, provider: Provider, options: Mapping[str, Any]) -> None:
        super().__init__()
        self.name = provider.name
        self._provider = provider
        self._options = options

    def run(self) -> int:
        return self._provider.watch(self._options)


class BaseProvider:
    name = "base"
    service_order = DEFAULT_SERVICE_ORDER
    dependencies: tuple[str, ...] = ()

    def init(self, options: Mapping[str, Any]) -> None:
        return None

    def build(self, options: Mapping[str, Any]) -> int:
        return SUCCESS

    def watch(self, options: Mapping[str, Any]) -> int:
        return SUCCESS

    def create_service(self, options: Mapping[str, Any]) -> Service:
        """Wrap ``watch()`` in a service.

        The wrapper cannot pass ``stop()`` on to ``watch()``, so providers whose
        watch mode blocks until stopped override this with their own service.
        """
        return _WatchCallService(self, options)


class ProviderRegistry:
    def __init__(self, providers: Iterable[Provider] = ()) -> None:
        self._providers: dict[str, Provider] = {}
        for provider in providers:
            if provider.name in self._providers:
                raise ConfigurationError(f"Provider '{provider.name}' is registered twice")
            self._providers[provider.name] = provider

    def has(self, name: str) -> bool:
        return name in self._providers

    def get(self, name: str) -> Provider:
        provider = self._providers.get(name)
        if provider is None:
            available = ", ".join(sorted(self._providers)) or "<none>"
            raise NotFoundError(f"Provider '{name}' is not registered. Available: {available}")
        return provider

    def names(self) -> list[str]:
        return sorted(self._providers)

    def providers(self) -> list[Provider]:
        return sorted(self._providers.values(), key=lambda p: (p.service_order, p.name))

    def ordered_providers(self, entries: Sequence[ServiceConfig]) -> list[tuple[ServiceConfig, Provider]]:
        """Resolve a start order for the requested service entries.

        A provider always comes after every requested provider named in its
        ``dependencies``. Otherwise ``service_order`` ascending decides, then
        configuration order. A dependency that is registered but not
        requested imposes no constraint; one that is neither registered nor
        requested is a ``ConfigurationError``, as is a cycle.
        """
        resolved: list[tuple[ServiceConfig, Provider]] = []
        for entry in entries:
            if not self.has(entry.provider):
                raise NotFoundError(
                    f"Service '{entry.id}' references unregistered provider '{entry.provider}'"
                )
            resolved.append((entry, self.get(entry.provider)))

        by_provider: dict[str, list[int]] = {}
        for index, (_, provider) in enumerate(resolved):
            by_provider.setdefault(provider.name, []).append(index)

        dependents: dict[int, set[int]] = {index: set() for index in range(len(resolved))}
        indegree = [0] * len(resolved)
        for index, (entry, provider) in enumerate(resolved):
            for dependency in provider.dependencies:
                if dependency not in by_provider:
                    if self.has(dependency):
                        continue
                    raise ConfigurationError(
                        f"Provider '{provider.name}' (service '{entry.id}') depends on unknown provider '{dependency}'"
                    )
                for upstream in by_provider[dependency]:
                    if upstream == index:
                        raise ConfigurationError(f"Provider '{provider.name}' depends on itself")
                    if index not in dependents[upstream]:
                        dependents[upstream].add(index)
                        indegree[index] += 1

        ready = [
            (provider.service_order, index)
            for index, (_, provider) in enumerate(resolved)
            if indegree[index] == 0
        ]
        heapq.heapify(ready)
        ordered: list[tuple[ServiceConfig, Provider]] = []
        while ready:
            _, index = heapq.heappop(ready)
            ordered.append(resolved[index])
            for downstream in dependents[index]:
                indegree[downstream] -= 1
                if indegree[downstream] == 0:
                    heapq.heappush(ready, (resolved[downstream][1].service_order, downstream))

        if len(ordered) != len(resolved):
            cyclic = sorted({resolved[i][1].name for i, degree in enumerate(indegree) if degree > 0})
            raise ConfigurationError(f"Cyclic provider dependencies detected: {', '.join(cyclic)}")
        return ordered
