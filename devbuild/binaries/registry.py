"""Name to binary-provider lookup used by the install flow."""

from __future__ import annotations

from collections.abc import Iterable

from devbuild.binaries.providers import BinaryProvider, GenericNpmBinaryProvider
from devbuild.core.errors import ConfigurationError, NotFoundError


class BinaryRegistry:
    def __init__(self, providers: Iterable[BinaryProvider] = ()) -> None:
        self._providers: dict[str, BinaryProvider] = {}
        for provider in providers:
            if provider.name in self._providers:
                raise ConfigurationError(f"Binary provider '{provider.name}' is registered twice")
            self._providers[provider.name] = provider

    def has(self, name: str) -> bool:
        return name in self._providers

    def get(self, name: str) -> BinaryProvider:
        provider = self._providers.get(name)
        if provider is None:
            available = ", ".join(sorted(self._providers)) or "<none>"
            raise NotFoundError(f"Binary '{name}' is not registered. Available: {available}")
        return provider

    def names(self) -> list[str]:
        return sorted(self._providers)

    def generic_npm_provider(self) -> GenericNpmBinaryProvider | None:
        for provider in self._providers.values():
            if isinstance(provider, GenericNpmBinaryProvider):
                return provider
        return None
