"""Default wiring of binary and build providers for a project."""

from __future__ import annotations

import httpx

from devbuild.binaries.providers import GenericNpmBinaryProvider, TailwindBinary
from devbuild.binaries.registry import BinaryRegistry
from devbuild.core.config import Config
from devbuild.core.lifecycle import LoggerSink
from devbuild.core.registry import ProviderRegistry
from devbuild.providers.binaries import BinariesProvider
from devbuild.providers.hot_reload import HotReloadProvider
from devbuild.providers.tailwind import TailwindProvider


def build_binary_registry(config: Config, *, client: httpx.Client | None = None) -> BinaryRegistry:
    return BinaryRegistry(
        [
            TailwindBinary(client=client),
            GenericNpmBinaryProvider(config, client=client),
        ]
    )


def build_provider_registry(
    config: Config,
    binary_registry: BinaryRegistry | None = None,
    logger: LoggerSink | None = None,
) -> ProviderRegistry:
    binaries = binary_registry or build_binary_registry(config)
    tailwind = binaries.get("tailwindcss") if binaries.has("tailwindcss") else None
    if not isinstance(tailwind, TailwindBinary):
        tailwind = TailwindBinary()
    return ProviderRegistry(
        [
            BinariesProvider(config, binaries, logger),
            TailwindProvider(config, tailwind, logger),
            HotReloadProvider(config, logger),
        ]
    )
