"""Top-level orchestrators that run configured providers in dependency order."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

from devbuild.core.config import Config, service_entries
from devbuild.core.errors import ProviderRuntimeError
from devbuild.core.lifecycle import Service
from devbuild.core.model import FAILURE, SUCCESS, ServiceConfig
from devbuild.core.registry import Provider, ProviderRegistry

DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_SHUTDOWN_TIMEOUT = 30.0
LOGGER = logging.getLogger(__name__)


class OrchestratorService(Service):
    """Shared config/registry plumbing for the dev, watch and build orchestrators."""

    def __init__(
        self,
        config: Config,
        provider_registry: ProviderRegistry,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        super().__init__()
        self.config = config
        self.provider_registry = provider_registry
        self.poll_interval = poll_interval
        self._failed: list[str] = []

    def get_config(self) -> Config:
        return self.config

    def get_provider_registry(self) -> ProviderRegistry:
        return self.provider_registry

    def failed_services(self) -> list[str]:
        return list(self._failed)

    def enabled_entries(self) -> list[ServiceConfig]:
        return [entry for entry in service_entries(self.config) if entry.enabled]

    def start(self) -> int:
        self._failed = []
        return super().start()

    def _init_all(self, ordered: Sequence[tuple[ServiceConfig, Provider]]) -> None:
        for entry, provider in ordered:
            LOGGER.debug("Initializing service '%s' via provider '%s'", entry.id, provider.name)
            try:
                provider.init(entry.options)
            except Exception as exc:
                self._failed = [entry.id]
                raise ProviderRuntimeError(f"Service '{entry.id}' failed to initialize: {exc}") from exc


class DevService(OrchestratorService):
    """Run ``init`` for every enabled one-shot (``flags.init``) service."""

    name = "dev"

    def run(self) -> int:
        entries = [entry for entry in self.enabled_entries() if entry.is_init]
        if not entries:
            self.log("No init services configured")
            return SUCCESS

        ordered = self.provider_registry.ordered_providers(entries)
        self._init_all(ordered)
        self.log(f"Initialized {len(ordered)} service(s)")
        return SUCCESS


class BuildService(OrchestratorService):
    """Init everything, then run a one-shot ``build`` for each non-init service."""

    name = "build"

    def run(self) -> int:
        entries = self.enabled_entries()
        if not entries:
            self.log("No services configured")
            return SUCCESS

        ordered = self.provider_registry.ordered_providers(entries)
        self._init_all(ordered)
        for entry, provider in ordered:
            if entry.is_init:
                continue
            if self.shutdown_requested:
                return FAILURE
            self.log(f"Building {entry.id}")
            code = provider.build(entry.options)
            if code != SUCCESS:
                self._failed = [entry.id]
                raise ProviderRuntimeError(f"Service '{entry.id}' build failed with exit code {code}")
        return SUCCESS


@dataclass
class _Task:
    entry: ServiceConfig
    service: Service
    status: int | None = None
    done: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread | None = None

    def run(self) -> None:
        try:
            self.status = self.service.start()
        except Exception:
            LOGGER.exception("Task for service '%s' crashed", self.entry.id)
            self.status = FAILURE
        finally:
            self.done.set()


class DevWatchService(OrchestratorService):
    """Init every enabled service, then run all ``flags.dev`` services concurrently.

    The first task failure or an external ``stop()`` stops every sibling
    task. The result is ``SUCCESS`` only if every task returned ``SUCCESS``.
    """

    name = "dev-watch"

    def __init__(
        self,
        config: Config,
        provider_registry: ProviderRegistry,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
    ) -> None:
        super().__init__(config, provider_registry, poll_interval=poll_interval)
        self.shutdown_timeout = shutdown_timeout
        self._tasks: list[_Task] = []
        self._wake = threading.Event()

    def task_count(self) -> int:
        return len(self._tasks)

    def on_stop(self) -> None:
        self._wake.set()

    def start(self) -> int:
        self._tasks = []
        self._wake.clear()
        return super().start()

    def run(self) -> int:
        entries = self.enabled_entries()
        if not entries:
            self.log("No services configured")
            return SUCCESS

        ordered = self.provider_registry.ordered_providers(entries)
        self._init_all(ordered)

        watched = [(entry, provider) for entry, provider in ordered if entry.is_dev]
        if not watched:
            self.log("No dev services to run")
            return SUCCESS

        for entry, provider in watched:
            service = provider.create_service(entry.options)
            service.set_logger(self.logger)
            task = _Task(entry=entry, service=service)
            task.thread = threading.Thread(target=task.run, name=f"devbuild-{entry.id}", daemon=True)
            self._tasks.append(task)

        for task in self._tasks:
            self.log(f"Starting {task.entry.id}")
            assert task.thread is not None
            task.thread.start()

        try:
            self._supervise()
        finally:
            self._shutdown_tasks()

        self._failed = [task.entry.id for task in self._tasks if task.status != SUCCESS]
        if self._failed:
            raise ProviderRuntimeError(f"Failed services: {', '.join(self._failed)}")
        self.log("All services stopped")
        return SUCCESS

    def _supervise(self) -> None:
        while not self.shutdown_requested:
            finished = [task for task in self._tasks if task.done.is_set()]
            failed = [task for task in finished if task.status != SUCCESS]
            if failed:
                names = ", ".join(task.entry.id for task in failed)
                self.log(f"Error: {names} failed, stopping remaining services", level=logging.ERROR)
                return
            if len(finished) == len(self._tasks):
                return
            self._wake.wait(self.poll_interval)

    def _shutdown_tasks(self) -> None:
        # a task may not have entered RUNNING yet, so stop() is repeated until it returns
        deadline = time.monotonic() + self.shutdown_timeout
        while True:
            alive = [task for task in self._tasks if not task.done.is_set()]
            if not alive:
                return
            if time.monotonic() >= deadline:
                names = ", ".join(task.entry.id for task in alive)
                self.log(
                    f"Error: {names} did not stop within {self.shutdown_timeout:g}s, abandoning",
                    level=logging.ERROR,
                )
                return
            for task in alive:
                task.service.stop()
            for task in alive:
                task.done.wait(self.poll_interval)
