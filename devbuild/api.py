"""Stable public API for driving devbuild from scripts and other tools.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from devbuild.binaries.installer import InstallReport, install_binaries
from devbuild.binaries.registry import BinaryRegistry
from devbuild.core.config import Config, load_config
from devbuild.core.errors import (
    AcquisitionError,
    ConfigurationError,
    DevbuildError,
    NotFoundError,
    ProviderRuntimeError,
    WatchBackendError,
)
from devbuild.core.lifecycle import LoggerSink, Service
from devbuild.core.model import FAILURE, SUCCESS, ServiceConfig
from devbuild.core.registry import ProviderRegistry
from devbuild.providers.factory import build_binary_registry, build_provider_registry
from devbuild.services.dev import BuildService, DevService, DevWatchService

__all__ = [
    "AcquisitionError",
    "ConfigurationError",
    "DevbuildError",
    "NotFoundError",
    "ProviderRuntimeError",
    "WatchBackendError",
    "FAILURE",
    "SUCCESS",
    "Config",
    "InstallReport",
    "ProviderInfo",
    "ServiceConfig",
    "Client",
]


@dataclass(frozen=True)
class ProviderInfo:
    name: str
    service_order: int
    dependencies: tuple[str, ...]


class Client:
    """Public client wrapping configuration loading and the orchestrators.

    A `Client` owns one project configuration and the provider registries
    built from it. Long-running calls (`watch`) block; call `stop()` from
    another thread or a signal handler to end them.
    """

    def __init__(
        self,
        *,
        config_path: Path | str | None = None,
        config: Config | None = None,
        logger: LoggerSink | None = None,
        binary_registry: BinaryRegistry | None = None,
        provider_registry: ProviderRegistry | None = None,
    ) -> None:
        self.config = config if config is not None else load_config(config_path)
        self.logger = logger
        self.binary_registry = binary_registry or build_binary_registry(self.config)
        self.provider_registry = provider_registry or build_provider_registry(
            self.config, self.binary_registry, logger
        )
        self._active: Service | None = None

    def providers(self) -> list[ProviderInfo]:
        return [
            ProviderInfo(name=p.name, service_order=p.service_order, dependencies=tuple(p.dependencies))
            for p in self.provider_registry.providers()
        ]

    def install(self, names: list[str] | None = None) -> InstallReport:
        return install_binaries(self.config, self.binary_registry, self.logger, names=names)

    def dev(self) -> int:
        return self._run(DevService(self.config, self.provider_registry))

    def build(self) -> int:
        return self._run(BuildService(self.config, self.provider_registry))

    def watch(self) -> int:
        return self._run(DevWatchService(self.config, self.provider_registry))

    def stop(self) -> None:
        if self._active is not None:
            self._active.stop()

    def _run(self, service: Service) -> int:
        service.set_logger(self.logger)
        self._active = service
        try:
            return service.start()
        finally:
            self._active = None
