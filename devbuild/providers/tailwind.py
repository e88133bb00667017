"""Tailwind CSS compiler provider."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from devbuild.binaries.providers import TailwindBinary
from devbuild.core.config import Config
from devbuild.core.lifecycle import LoggerSink, emit
from devbuild.core.registry import BaseProvider
from devbuild.services.tailwind import TailwindService


class TailwindProvider(BaseProvider):
    name = "tailwind"
    service_order = 20
    dependencies = ("binaries",)

    def __init__(self, config: Config, binary: TailwindBinary, logger: LoggerSink | None = None) -> None:
        self.config = config
        self.binary = binary
        self.logger = logger

    def init(self, options: Mapping[str, Any]) -> None:
        executable = self.binary.executable_path(self.config.var_dir)
        if executable.is_file():
            return
        emit(self.logger, f"Tailwind executable missing at {executable}, downloading")
        self.binary.create_manager(self.config.var_dir).ensure_latest(self.logger)

    def build(self, options: Mapping[str, Any]) -> int:
        return self._service(options, watch=False).start()

    def watch(self, options: Mapping[str, Any]) -> int:
        return self.create_service(options).start()

    def create_service(self, options: Mapping[str, Any]) -> TailwindService:
        return self._service(options, watch=True)

    def _service(self, options: Mapping[str, Any], *, watch: bool) -> TailwindService:
        minify = options.get("minify")
        service = TailwindService(
            self.config,
            watch=watch,
            minify=None if minify is None else bool(minify),
            executable=self.binary.executable_path(self.config.var_dir),
        )
        service.set_active_app_id(options.get("app"))
        service.set_logger(self.logger)
        return service
