"""Install every binary and npm package the project configuration requires."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from devbuild.binaries.registry import BinaryRegistry
from devbuild.core.config import Config
from devbuild.core.errors import DevbuildError
from devbuild.core.lifecycle import LoggerSink, emit
from devbuild.core.model import FAILURE, SUCCESS

REQUIRED_BINARIES_KEY = "services.binaries.options.required"
LOGGER = logging.getLogger(__name__)


@dataclass
class InstallReport:
    installed: dict[str, str] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    synced: list[str] = field(default_factory=list)
    total: int = 0

    @property
    def exit_code(self) -> int:
        return SUCCESS if len(self.installed) == self.total and not self.failed else FAILURE


def required_binaries(config: Config) -> list[str]:
    value = config.get(REQUIRED_BINARIES_KEY, [])
    if isinstance(value, str):
        value = value.split(",")
    return [str(name).strip() for name in value if str(name).strip()]


def install_binaries(
    config: Config,
    registry: BinaryRegistry,
    logger: LoggerSink | None = None,
    *,
    names: Iterable[str] | None = None,
) -> InstallReport:
    report = InstallReport()
    requested = list(names) if names is not None else required_binaries(config)
    generic = registry.generic_npm_provider()
    LOGGER.debug("Installing binaries: %s", ", ".join(requested) or "<none>")

    for binary in requested:
        if generic is not None and binary == generic.name:
            continue
        report.total += 1
        if not registry.has(binary):
            emit(logger, f"Warning: Binary {binary} not found in registry, skipping...", level=logging.WARNING)
            report.skipped.append(binary)
            continue
        try:
            manager = registry.get(binary).create_manager(config.var_dir, binary)
            if manager is None:
                emit(logger, f"Warning: {binary} has nothing configured, skipping...", level=logging.WARNING)
                report.skipped.append(binary)
                continue
            version = manager.ensure_latest(logger)
        except DevbuildError as exc:
            emit(logger, f"Failed to install {binary}: {exc}", level=logging.ERROR)
            report.failed[binary] = str(exc)
            continue
        emit(logger, f"{binary} installed ({version})")
        report.installed[binary] = version

    if generic is not None and generic.package_count() > 0:
        packages = generic.packages()
        report.total += len(packages)
        try:
            versions = generic.ensure_all(logger)
        except DevbuildError as exc:
            emit(logger, f"Failed to install generic npm packages: {exc}", level=logging.ERROR)
            for package in packages:
                report.failed[package] = str(exc)
            return report
        for package, version in zip(packages, versions):
            report.installed[package] = version
            emit(logger, f"{package} installed ({version})")
        report.synced = generic.sync_to_public_vendor(logger)

    return report
