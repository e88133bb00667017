"""Start/stop state machine shared by every devbuild service."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable

from devbuild.core.errors import DevbuildError
from devbuild.core.model import FAILURE, SUCCESS

LOGGER = logging.getLogger(__name__)

LoggerSink = Callable[[str], None]


def emit(sink: LoggerSink | None, message: str, *, level: int = logging.INFO) -> None:
    """Narrate a message to the optional user-facing sink and the module logger."""
    LOGGER.log(level, message)
    if sink is not None:
        sink(message)


class ServiceState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class Service:
    """Base class for short and long lived services.

    ``start()`` runs ``run()`` to completion and returns ``SUCCESS`` or
    ``FAILURE``. ``stop()`` only raises a cooperative flag that ``run()``
    loops are expected to poll via ``shutdown_requested``; it never
    interrupts a blocking call. Errors raised by ``run()`` are logged and
    turned into ``FAILURE``.
    """

    name = "service"

    def __init__(self) -> None:
        self._state = ServiceState.IDLE
        self._should_shutdown = False
        self._logger: LoggerSink | None = None
        self.last_error: BaseException | None = None

    @classmethod
    def service_name(cls) -> str:
        return cls.name

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def shutdown_requested(self) -> bool:
        return self._should_shutdown

    @property
    def logger(self) -> LoggerSink | None:
        return self._logger

    def set_logger(self, logger: LoggerSink | None) -> None:
        self._logger = logger

    def is_running(self) -> bool:
        return self._state is ServiceState.RUNNING

    def start(self) -> int:
        if self._state is ServiceState.RUNNING:
            raise DevbuildError(f"Service '{self.name}' is already running")

        self._should_shutdown = False
        self.last_error = None
        self._state = ServiceState.RUNNING
        try:
            code = self.run()
        except DevbuildError as exc:
            self.last_error = exc
            self.log(f"Error: {exc}", level=logging.ERROR)
            code = FAILURE
        except Exception as exc:
            self.last_error = exc
            LOGGER.exception("Service '%s' crashed", self.name)
            self.log(f"Error: {self.name} failed unexpectedly: {exc}", level=logging.ERROR)
            code = FAILURE
        finally:
            self._state = ServiceState.STOPPED
        return SUCCESS if code == SUCCESS else FAILURE

    def stop(self) -> None:
        if self._state is not ServiceState.RUNNING:
            return
        self._should_shutdown = True
        self.on_stop()

    def run(self) -> int:
        raise NotImplementedError

    def on_stop(self) -> None:
        """Hook for subclasses that need to nudge a blocking wait."""

    def log(self, message: str, *, level: int = logging.INFO) -> None:
        emit(self._logger, message, level=level)
