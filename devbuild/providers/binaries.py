"""Init-only provider that installs the binaries and npm packages a project needs."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from devbuild.binaries.installer import install_binaries
from devbuild.binaries.registry import BinaryRegistry
from devbuild.core.config import Config
from devbuild.core.errors import AcquisitionError
from devbuild.core.lifecycle import LoggerSink
from devbuild.core.model import SUCCESS
from devbuild.core.registry import BaseProvider


class BinariesProvider(BaseProvider):
    name = "binaries"
    service_order = 0

    def __init__(self, config: Config, binary_registry: BinaryRegistry, logger: LoggerSink | None = None) -> None:
        self.config = config
        self.binary_registry = binary_registry
        self.logger = logger

    def init(self, options: Mapping[str, Any]) -> None:
        names = options.get("required")
        if isinstance(names, str):
            names = names.split(",")
        report = install_binaries(self.config, self.binary_registry, self.logger, names=names)
        if report.exit_code != SUCCESS:
            problems = sorted({*report.failed, *report.skipped})
            raise AcquisitionError(f"Could not install: {', '.join(problems)}")

    def build(self, options: Mapping[str, Any]) -> int:
        return SUCCESS
